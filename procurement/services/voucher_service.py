"""
Disbursement vouchers: at most one per accepted inspection report.

Status only moves forward:
  for_signature -> submitted -> processed

Entering ``processed`` needs a payment date that is not in the future and,
for check payments, a check number. A processed voucher is final.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.exceptions import (
    ConflictError,
    DuplicateVoucher,
    InvalidStatusTransition,
    ValidationError,
)
from procurement.models.inspection import InspectionReport
from procurement.models.purchase_order import PurchaseOrder
from procurement.models.voucher import DisbursementVoucher, VOUCHER_STATUSES
from procurement.schemas.voucher import VoucherCreate, VoucherUpdate
from procurement.services.audit_service import create_audit_log, snapshot
from procurement.services.inspection_service import get_inspection_report
from procurement.services.lookup import fetch_page, get_or_raise
from procurement.services.numbering import DV_PREFIX, generate_document_number
from procurement.services.policy import Actor, ensure_capability
from procurement.services.transaction import atomic, check_version

logger = structlog.get_logger()

_AUDIT_FIELDS = (
    "status",
    "payee_name",
    "amount_cents",
    "payment_method",
    "check_number",
    "payment_date",
    "processed_at",
)


def check_voucher_transition(current: str, target: str) -> None:
    """Forward only. Skipping ahead is fine, staying put or going back is not."""
    if target not in VOUCHER_STATUSES or VOUCHER_STATUSES.index(
        target
    ) <= VOUCHER_STATUSES.index(current):
        raise InvalidStatusTransition("DisbursementVoucher", current, target)


def validate_processing(
    payment_method: str,
    payment_date: Optional[date],
    check_number: Optional[str],
    today: Optional[date] = None,
) -> None:
    today = today or date.today()
    if payment_date is None:
        raise ValidationError(
            "A payment date is required to process a voucher", {"field": "payment_date"}
        )
    if payment_date > today:
        raise ValidationError(
            "Payment date cannot be in the future",
            {"payment_date": payment_date.isoformat()},
        )
    if payment_method == "check" and not (check_number or "").strip():
        raise ValidationError(
            "A check number is required for check payments", {"field": "check_number"}
        )


def _vouchered_report_ids():
    return select(DisbursementVoucher.inspection_report_id)


async def get_voucher(
    session: AsyncSession, voucher_id, for_update: bool = False
) -> DisbursementVoucher:
    return await get_or_raise(session, DisbursementVoucher, voucher_id, for_update=for_update)


async def list_vouchers(
    session: AsyncSession, status: Optional[str] = None, page: int = 1, limit: int = 50
) -> tuple[list[DisbursementVoucher], int]:
    q = select(DisbursementVoucher)
    if status:
        q = q.where(DisbursementVoucher.status == status)
    return await fetch_page(
        session, q.order_by(DisbursementVoucher.created_at.desc()), page, limit
    )


async def list_available_for_voucher(session: AsyncSession) -> list[InspectionReport]:
    """Accepted reports that do not have a voucher yet."""
    result = await session.execute(
        select(InspectionReport)
        .where(
            InspectionReport.overall_result == "accepted",
            InspectionReport.id.notin_(_vouchered_report_ids()),
        )
        .order_by(InspectionReport.inspection_date.desc())
    )
    return list(result.scalars().all())


async def suggest_payee_and_amount(
    session: AsyncSession, report: InspectionReport
) -> tuple[Optional[str], Optional[int]]:
    if report.is_emergency_purchase:
        return report.emergency_supplier_name, report.emergency_amount_cents
    if report.po_id is None:
        return None, None
    po = await session.get(PurchaseOrder, report.po_id)
    if po is None:
        return None, None
    return po.supplier_name, po.total_cents


async def _voucher_exists(session: AsyncSession, report_id: uuid.UUID) -> bool:
    result = await session.execute(
        select(DisbursementVoucher.id).where(
            DisbursementVoucher.inspection_report_id == report_id
        )
    )
    return result.first() is not None


async def create_voucher(
    session: AsyncSession, actor: Actor, data: VoucherCreate
) -> DisbursementVoucher:
    ensure_capability(actor, "dv:create")
    report = await get_inspection_report(session, data.inspection_report_id)
    if report.overall_result != "accepted":
        raise ValidationError(
            "Only accepted inspection reports can be paid",
            {"report_id": str(report.id), "overall_result": report.overall_result},
        )

    if await _voucher_exists(session, report.id):
        raise DuplicateVoucher(report.id)

    suggested_payee, suggested_amount = await suggest_payee_and_amount(session, report)
    payee = data.payee_name or suggested_payee
    amount = data.amount_cents or suggested_amount
    if not payee or not amount:
        raise ValidationError(
            "Payee and amount are required", {"report_id": str(report.id)}
        )

    try:
        async with atomic(session, "dv_create"):
            voucher = DisbursementVoucher(
                dv_number=generate_document_number(DV_PREFIX),
                inspection_report_id=report.id,
                po_id=report.po_id,
                payee_name=payee,
                amount_cents=amount,
                payment_method=data.payment_method,
                check_number=data.check_number,
                status="for_signature",
                created_by=actor.user_id,
            )
            session.add(voucher)
            await session.flush()
            await create_audit_log(
                session,
                actor_id=actor.user_id,
                action="DV_CREATED",
                entity_type="DV",
                entity_id=voucher.id,
                after_state=snapshot(voucher, _AUDIT_FIELDS),
            )
    except IntegrityError as exc:
        # Lost a race with another voucher for the same report
        if "inspection_report" in str(exc.orig):
            raise DuplicateVoucher(report.id) from exc
        raise ConflictError("Voucher could not be saved", {"cause": str(exc.orig)}) from exc

    logger.info(
        "dv_created",
        voucher_id=str(voucher.id),
        dv_number=voucher.dv_number,
        report_id=str(report.id),
        amount_cents=voucher.amount_cents,
    )
    return voucher


async def advance_voucher_status(
    session: AsyncSession,
    actor: Actor,
    voucher_id,
    target: str,
    expected_version: Optional[int] = None,
    payment_date: Optional[date] = None,
    check_number: Optional[str] = None,
) -> DisbursementVoucher:
    ensure_capability(actor, "dv:process" if target == "processed" else "dv:edit")
    voucher = await get_voucher(session, voucher_id, for_update=True)
    check_version(voucher, expected_version, "DisbursementVoucher")
    check_voucher_transition(voucher.status, target)

    if target == "processed":
        check_number = check_number or voucher.check_number
        validate_processing(voucher.payment_method, payment_date, check_number)

    async with atomic(session, "dv_status_change"):
        before = snapshot(voucher, _AUDIT_FIELDS)
        voucher.status = target
        if target == "processed":
            voucher.payment_date = payment_date
            voucher.check_number = check_number
            voucher.processed_at = datetime.utcnow()
            voucher.processed_by = actor.user_id
        await session.flush()
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="DV_PROCESSED" if target == "processed" else "DV_STATUS_CHANGED",
            entity_type="DV",
            entity_id=voucher.id,
            before_state=before,
            after_state=snapshot(voucher, _AUDIT_FIELDS),
        )

    logger.info(
        "dv_status_changed",
        voucher_id=str(voucher.id),
        from_status=before["status"],
        to_status=target,
    )
    return voucher


async def mark_voucher_paid(
    session: AsyncSession,
    actor: Actor,
    voucher_id,
    payment_date: date,
    check_number: Optional[str] = None,
    expected_version: Optional[int] = None,
) -> DisbursementVoucher:
    return await advance_voucher_status(
        session,
        actor,
        voucher_id,
        "processed",
        expected_version=expected_version,
        payment_date=payment_date,
        check_number=check_number,
    )


async def update_voucher_details(
    session: AsyncSession, actor: Actor, voucher_id, data: VoucherUpdate
) -> DisbursementVoucher:
    ensure_capability(actor, "dv:edit")
    voucher = await get_voucher(session, voucher_id, for_update=True)
    check_version(voucher, data.expected_version, "DisbursementVoucher")
    if voucher.status == "processed":
        raise ValidationError(
            "A processed voucher can no longer be edited", {"voucher_id": str(voucher.id)}
        )

    async with atomic(session, "dv_update"):
        before = snapshot(voucher, _AUDIT_FIELDS)
        update_data = data.model_dump(exclude_unset=True, exclude={"expected_version"})
        for field, value in update_data.items():
            if value is not None:
                setattr(voucher, field, value)
        voucher.updated_at = datetime.utcnow()
        await session.flush()
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="DV_UPDATED",
            entity_type="DV",
            entity_id=voucher.id,
            before_state=before,
            after_state=snapshot(voucher, _AUDIT_FIELDS),
        )

    logger.info("dv_updated", voucher_id=str(voucher.id), fields=sorted(update_data))
    return voucher
