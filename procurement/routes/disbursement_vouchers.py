from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.middleware.auth import get_current_actor
from procurement.models.voucher import DisbursementVoucher
from procurement.schemas.common import PaginatedResponse, build_pagination
from procurement.schemas.voucher import (
    AvailableReportResponse,
    MarkPaidRequest,
    VoucherCreate,
    VoucherResponse,
    VoucherStatusChange,
    VoucherUpdate,
)
from procurement.services import voucher_service
from procurement.services.policy import Actor
from procurement.services.transaction import call_with_transient_retry

router = APIRouter()


def _to_response(dv: DisbursementVoucher) -> VoucherResponse:
    return VoucherResponse(
        id=str(dv.id),
        dv_number=dv.dv_number,
        inspection_report_id=str(dv.inspection_report_id),
        po_id=str(dv.po_id) if dv.po_id else None,
        payee_name=dv.payee_name,
        amount_cents=dv.amount_cents,
        payment_method=dv.payment_method,
        check_number=dv.check_number,
        status=dv.status,
        payment_date=dv.payment_date.isoformat() if dv.payment_date else None,
        processed_at=dv.processed_at.isoformat() if dv.processed_at else None,
        processed_by=str(dv.processed_by) if dv.processed_by else None,
        created_by=str(dv.created_by),
        version=dv.version,
        created_at=dv.created_at.isoformat() if dv.created_at else "",
        updated_at=dv.updated_at.isoformat() if dv.updated_at else "",
    )


@router.get("/available-reports", response_model=List[AvailableReportResponse])
async def list_available_reports(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    reports = await voucher_service.list_available_for_voucher(db)
    items = []
    for report in reports:
        payee, amount = await voucher_service.suggest_payee_and_amount(db, report)
        items.append(
            AvailableReportResponse(
                id=str(report.id),
                iar_number=report.iar_number,
                po_id=str(report.po_id) if report.po_id else None,
                inspection_date=report.inspection_date.isoformat(),
                suggested_payee=payee,
                suggested_amount_cents=amount,
            )
        )
    return items


@router.get("", response_model=PaginatedResponse[VoucherResponse])
async def list_vouchers(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    dv_status: str = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    vouchers, total = await voucher_service.list_vouchers(db, dv_status, page, limit)
    meta = build_pagination(page, limit, total)
    return PaginatedResponse(data=[_to_response(dv) for dv in vouchers], pagination=meta)


@router.get("/{voucher_id}", response_model=VoucherResponse)
async def get_voucher(
    voucher_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(await voucher_service.get_voucher(db, voucher_id))


@router.post("", response_model=VoucherResponse, status_code=status.HTTP_201_CREATED)
async def create_voucher(
    body: VoucherCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    dv = await call_with_transient_retry(voucher_service.create_voucher, db, actor, body)
    return _to_response(dv)


@router.patch("/{voucher_id}", response_model=VoucherResponse)
async def update_voucher(
    voucher_id: str,
    body: VoucherUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    dv = await call_with_transient_retry(
        voucher_service.update_voucher_details, db, actor, voucher_id, body
    )
    return _to_response(dv)


@router.post("/{voucher_id}/status", response_model=VoucherResponse)
async def change_voucher_status(
    voucher_id: str,
    body: VoucherStatusChange,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    dv = await call_with_transient_retry(
        voucher_service.advance_voucher_status,
        db,
        actor,
        voucher_id,
        body.status,
        expected_version=body.expected_version,
        payment_date=body.payment_date,
        check_number=body.check_number,
    )
    return _to_response(dv)


@router.post("/{voucher_id}/mark-paid", response_model=VoucherResponse)
async def mark_voucher_paid(
    voucher_id: str,
    body: MarkPaidRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    dv = await call_with_transient_retry(
        voucher_service.mark_voucher_paid,
        db,
        actor,
        voucher_id,
        body.payment_date,
        check_number=body.check_number,
        expected_version=body.expected_version,
    )
    return _to_response(dv)
