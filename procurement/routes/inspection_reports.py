from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.database import get_db
from procurement.middleware.auth import get_current_actor
from procurement.models.inspection import InspectionReport, InspectionItem
from procurement.schemas.common import PaginatedResponse, build_pagination
from procurement.schemas.inspection import (
    InspectionReportCreate,
    InspectionReportUpdate,
    InspectionReportResponse,
    InspectionItemResponse,
)
from procurement.services import inspection_service
from procurement.services.policy import Actor
from procurement.services.transaction import call_with_transient_retry

router = APIRouter()


def _item_to_response(item: InspectionItem) -> InspectionItemResponse:
    return InspectionItemResponse(
        id=str(item.id),
        po_line_item_id=str(item.po_line_item_id),
        inspected_quantity=item.inspected_quantity,
        accepted_quantity=item.accepted_quantity,
        rejected_quantity=item.rejected_quantity,
        result=item.result,
        remarks=item.remarks,
    )


def _to_response(
    report: InspectionReport, items: list[InspectionItem]
) -> InspectionReportResponse:
    return InspectionReportResponse(
        id=str(report.id),
        iar_number=report.iar_number,
        po_id=str(report.po_id) if report.po_id else None,
        inspector_id=str(report.inspector_id),
        inspection_date=report.inspection_date.isoformat(),
        overall_result=report.overall_result,
        remarks=report.remarks,
        is_emergency_purchase=bool(report.is_emergency_purchase),
        emergency_supplier_name=report.emergency_supplier_name,
        emergency_amount_cents=report.emergency_amount_cents,
        emergency_reference=report.emergency_reference,
        version=report.version,
        items=[_item_to_response(i) for i in items],
        created_at=report.created_at.isoformat() if report.created_at else "",
        updated_at=report.updated_at.isoformat() if report.updated_at else "",
    )


async def _respond(db: AsyncSession, report: InspectionReport) -> InspectionReportResponse:
    return _to_response(report, await inspection_service.get_inspection_items(db, report.id))


@router.get("", response_model=PaginatedResponse[InspectionReportResponse])
async def list_inspection_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    po_id: str = Query(None),
    overall_result: str = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    reports, total = await inspection_service.list_inspection_reports(
        db, po_id, overall_result, page, limit
    )
    meta = build_pagination(page, limit, total)
    return PaginatedResponse(data=[await _respond(db, r) for r in reports], pagination=meta)


@router.get("/{report_id}", response_model=InspectionReportResponse)
async def get_inspection_report(
    report_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _respond(db, await inspection_service.get_inspection_report(db, report_id))


@router.post("", response_model=InspectionReportResponse, status_code=status.HTTP_201_CREATED)
async def create_inspection_report(
    body: InspectionReportCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    report = await call_with_transient_retry(
        inspection_service.create_inspection_report, db, actor, body
    )
    return await _respond(db, report)


@router.put("/{report_id}", response_model=InspectionReportResponse)
async def update_inspection_report(
    report_id: str,
    body: InspectionReportUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    report = await call_with_transient_retry(
        inspection_service.update_inspection_report, db, actor, report_id, body
    )
    return await _respond(db, report)
