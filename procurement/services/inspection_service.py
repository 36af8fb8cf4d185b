"""
Inspection & Acceptance Reports: reconciles deliveries against order lines.

Each inspected quantity is split into accepted and rejected. Only accepted
units count as delivered: the order line's delivered/remaining figures move
through the ledger, and rejected units stay open for a later inspection.

Results are derived, never typed in:
  item    rejected > 0 and accepted > 0  -> requires_reinspection
          rejected > 0 and accepted == 0 -> rejected
          otherwise                      -> accepted
  report  rejected if any item is rejected outright, else
          requires_reinspection if any item is mixed, else accepted

Editing a report re-runs the same rules and applies only the difference
between what each item accepts now and what it already delivered.
"""

import uuid
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.exceptions import (
    EmptySelection,
    InsufficientRemainder,
    ValidationError,
)
from procurement.models.inspection import InspectionReport, InspectionItem
from procurement.models.purchase_order import PoLineItem
from procurement.models.voucher import DisbursementVoucher
from procurement.schemas.inspection import (
    InspectionReportCreate,
    InspectionReportUpdate,
)
from procurement.services import ledger_service
from procurement.services.audit_service import create_audit_log, snapshot
from procurement.services.lookup import as_uuid, fetch_page, get_or_raise
from procurement.services.numbering import IAR_PREFIX, generate_document_number
from procurement.services.order_service import get_purchase_order
from procurement.services.policy import Actor, ensure_capability
from procurement.services.transaction import atomic, check_version

logger = structlog.get_logger()

_AUDIT_FIELDS = (
    "overall_result",
    "inspection_date",
    "remarks",
    "emergency_supplier_name",
    "emergency_amount_cents",
    "emergency_reference",
)


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------

def derive_item_result(accepted: int, rejected: int) -> str:
    if rejected > 0 and accepted > 0:
        return "requires_reinspection"
    if rejected > 0:
        return "rejected"
    return "accepted"


def derive_overall_result(items: Iterable[tuple[int, int]]) -> str:
    """Aggregate ``(accepted, rejected)`` pairs into the report result."""
    results = {derive_item_result(accepted, rejected) for accepted, rejected in items}
    if "rejected" in results:
        return "rejected"
    if "requires_reinspection" in results:
        return "requires_reinspection"
    return "accepted"


def apportion(
    inspected: int,
    accepted: Optional[int] = None,
    rejected: Optional[int] = None,
    edited: Optional[str] = None,
) -> tuple[int, int]:
    """Split ``inspected`` into (accepted, rejected).

    The edited figure is clamped into ``[0, inspected]`` and the other one is
    recomputed. Without ``edited``, a lone figure counts as the edited one,
    and when both are given the accepted figure wins. Nothing given means
    everything was accepted.
    """
    if edited is None:
        if accepted is None and rejected is None:
            return inspected, 0
        edited = "rejected" if accepted is None else "accepted"

    if edited == "rejected":
        rejected = min(max(rejected or 0, 0), inspected)
        return inspected - rejected, rejected
    if edited == "accepted":
        accepted = min(max(accepted or 0, 0), inspected)
        return accepted, inspected - accepted
    raise ValidationError(
        "last_edited must be 'accepted' or 'rejected'", {"last_edited": edited}
    )


def _require_acceptance(pairs: list[tuple[int, int]]) -> None:
    if not any(accepted > 0 for accepted, _ in pairs):
        raise ValidationError(
            "At least one item must have an accepted quantity greater than zero"
        )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_inspection_report(
    session: AsyncSession, report_id, for_update: bool = False
) -> InspectionReport:
    return await get_or_raise(session, InspectionReport, report_id, for_update=for_update)


async def get_inspection_items(
    session: AsyncSession, report_id: uuid.UUID
) -> list[InspectionItem]:
    result = await session.execute(
        select(InspectionItem)
        .where(InspectionItem.report_id == report_id)
        .order_by(InspectionItem.id)
    )
    return list(result.scalars().all())


async def list_inspection_reports(
    session: AsyncSession,
    po_id=None,
    overall_result: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[InspectionReport], int]:
    q = select(InspectionReport)
    if po_id:
        q = q.where(InspectionReport.po_id == as_uuid(po_id, "po_id"))
    if overall_result:
        q = q.where(InspectionReport.overall_result == overall_result)
    return await fetch_page(
        session, q.order_by(InspectionReport.created_at.desc()), page, limit
    )


async def _has_voucher(session: AsyncSession, report_id: uuid.UUID) -> bool:
    result = await session.execute(
        select(DisbursementVoucher.id).where(
            DisbursementVoucher.inspection_report_id == report_id
        )
    )
    return result.first() is not None


# ---------------------------------------------------------------------------
# Create / edit
# ---------------------------------------------------------------------------

async def create_inspection_report(
    session: AsyncSession, actor: Actor, data: InspectionReportCreate
) -> InspectionReport:
    ensure_capability(actor, "iar:create")
    if data.is_emergency_purchase:
        return await _create_emergency_report(session, actor, data)

    if not data.po_id:
        raise ValidationError("po_id is required for a non-emergency report")
    if not data.items:
        raise EmptySelection("At least one order line must be inspected")

    po = await get_purchase_order(session, data.po_id)
    if po.status != "approved":
        raise ValidationError(
            "Only approved purchase orders can be inspected",
            {"po_id": str(po.id), "status": po.status},
        )

    planned: list[tuple[PoLineItem, int, int, int, Optional[str]]] = []
    seen: set[uuid.UUID] = set()
    for item in data.items:
        line_id = as_uuid(item.po_line_item_id, "po_line_item_id")
        if line_id in seen:
            raise ValidationError(
                "An order line can only be inspected once per report",
                {"po_line_item_id": str(line_id)},
            )
        seen.add(line_id)

        line = await get_or_raise(session, PoLineItem, line_id, for_update=True)
        if line.po_id != po.id:
            raise ValidationError(
                "Order line does not belong to this purchase order",
                {"po_line_item_id": str(line_id)},
            )
        if line.cancelled or (line.remaining_quantity or 0) <= 0:
            raise ValidationError(
                "Order line has nothing left to inspect",
                {"po_line_item_id": str(line_id), "cancelled": line.cancelled},
            )

        inspected = item.inspected_quantity
        if inspected is None:
            inspected = line.remaining_quantity
        if inspected > line.remaining_quantity:
            raise InsufficientRemainder(
                subject=f"PoLineItem {line.id}",
                requested_quantity=inspected,
                available_quantity=line.remaining_quantity,
            )
        accepted, rejected = apportion(
            inspected, item.accepted_quantity, item.rejected_quantity, item.last_edited
        )
        planned.append((line, inspected, accepted, rejected, item.remarks))

    pairs = [(accepted, rejected) for _, _, accepted, rejected, _ in planned]
    _require_acceptance(pairs)

    async with atomic(session, "iar_create") as unit:
        report = InspectionReport(
            iar_number=generate_document_number(IAR_PREFIX),
            po_id=po.id,
            inspector_id=actor.user_id,
            inspection_date=data.inspection_date or date.today(),
            overall_result=derive_overall_result(pairs),
            remarks=data.remarks,
            is_emergency_purchase=False,
        )
        session.add(report)
        await session.flush()
        unit.track(report)

        for line, inspected, accepted, rejected, remarks in planned:
            item = InspectionItem(
                report_id=report.id,
                po_line_item_id=line.id,
                inspected_quantity=inspected,
                accepted_quantity=accepted,
                rejected_quantity=rejected,
                result=derive_item_result(accepted, rejected),
                remarks=remarks,
            )
            session.add(item)
            await session.flush()
            unit.track(item)
            await ledger_service.apply_delivery(
                session, line, item.id, accepted, actor.user_id
            )

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="IAR_CREATED",
            entity_type="IAR",
            entity_id=report.id,
            after_state=snapshot(report, _AUDIT_FIELDS),
        )

    logger.info(
        "iar_created",
        report_id=str(report.id),
        iar_number=report.iar_number,
        po_id=str(po.id),
        items=len(planned),
        overall_result=report.overall_result,
    )
    return report


async def _create_emergency_report(
    session: AsyncSession, actor: Actor, data: InspectionReportCreate
) -> InspectionReport:
    if data.po_id or data.items:
        raise ValidationError(
            "Emergency purchase reports are not linked to a purchase order"
        )
    if not data.emergency_supplier_name or not data.emergency_amount_cents:
        raise ValidationError(
            "Emergency purchase reports need a supplier name and an amount"
        )

    async with atomic(session, "iar_create_emergency"):
        report = InspectionReport(
            iar_number=generate_document_number(IAR_PREFIX),
            po_id=None,
            inspector_id=actor.user_id,
            inspection_date=data.inspection_date or date.today(),
            overall_result="accepted",
            remarks=data.remarks,
            is_emergency_purchase=True,
            emergency_supplier_name=data.emergency_supplier_name,
            emergency_amount_cents=data.emergency_amount_cents,
            emergency_reference=data.emergency_reference,
        )
        session.add(report)
        await session.flush()
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="IAR_CREATED",
            entity_type="IAR",
            entity_id=report.id,
            after_state=snapshot(report, _AUDIT_FIELDS),
        )

    logger.info(
        "iar_emergency_created",
        report_id=str(report.id),
        iar_number=report.iar_number,
        amount_cents=report.emergency_amount_cents,
    )
    return report


async def update_inspection_report(
    session: AsyncSession, actor: Actor, report_id, data: InspectionReportUpdate
) -> InspectionReport:
    ensure_capability(actor, "iar:edit")
    report = await get_inspection_report(session, report_id, for_update=True)
    check_version(report, data.expected_version, "InspectionReport")
    if await _has_voucher(session, report.id):
        raise ValidationError(
            "A report with a disbursement voucher can no longer be edited",
            {"report_id": str(report.id)},
        )
    if report.is_emergency_purchase and data.items:
        raise ValidationError("Emergency purchase reports have no items to edit")

    items = {item.id: item for item in await get_inspection_items(session, report.id)}
    changes: list[tuple[InspectionItem, PoLineItem, int, int, int, Optional[str]]] = []
    for update in data.items:
        item_id = as_uuid(update.id, "item id")
        item = items.get(item_id)
        if item is None:
            raise ValidationError(
                "Item does not belong to this report", {"item_id": str(item_id)}
            )
        if any(item is changed for changed, *_ in changes):
            raise ValidationError(
                "An item can only be edited once per request", {"item_id": str(item_id)}
            )
        line = await get_or_raise(session, PoLineItem, item.po_line_item_id, for_update=True)
        inspected = update.inspected_quantity or item.inspected_quantity
        # Only extra inspected units draw on what the line still has open
        growth = inspected - item.inspected_quantity
        if growth > (line.remaining_quantity or 0):
            raise InsufficientRemainder(
                subject=f"PoLineItem {line.id}",
                requested_quantity=growth,
                available_quantity=line.remaining_quantity or 0,
            )
        accepted, rejected = update.accepted_quantity, update.rejected_quantity
        if accepted is None and rejected is None and update.last_edited is None:
            # Keep the existing split when only the inspected figure moved
            accepted = item.accepted_quantity
            update_edited = "accepted"
        else:
            update_edited = update.last_edited
        accepted, rejected = apportion(inspected, accepted, rejected, update_edited)
        changes.append((item, line, inspected, accepted, rejected, update.remarks))

    changed_ids = {item.id for item, *_ in changes}
    pairs = [(accepted, rejected) for _, _, _, accepted, rejected, _ in changes] + [
        (item.accepted_quantity, item.rejected_quantity)
        for item in items.values()
        if item.id not in changed_ids
    ]
    if not report.is_emergency_purchase:
        _require_acceptance(pairs)

    async with atomic(session, "iar_update"):
        before = snapshot(report, _AUDIT_FIELDS)
        for item, line, inspected, accepted, rejected, remarks in changes:
            await ledger_service.apply_delivery(
                session, line, item.id, accepted, actor.user_id
            )
            item.inspected_quantity = inspected
            item.accepted_quantity = accepted
            item.rejected_quantity = rejected
            item.result = derive_item_result(accepted, rejected)
            if remarks is not None:
                item.remarks = remarks

        if data.inspection_date is not None:
            report.inspection_date = data.inspection_date
        if data.remarks is not None:
            report.remarks = data.remarks
        if report.is_emergency_purchase:
            if data.emergency_supplier_name is not None:
                report.emergency_supplier_name = data.emergency_supplier_name
            if data.emergency_amount_cents is not None:
                report.emergency_amount_cents = data.emergency_amount_cents
            if data.emergency_reference is not None:
                report.emergency_reference = data.emergency_reference
        else:
            report.overall_result = derive_overall_result(pairs)
        report.updated_at = datetime.utcnow()
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="IAR_UPDATED",
            entity_type="IAR",
            entity_id=report.id,
            before_state=before,
            after_state=snapshot(report, _AUDIT_FIELDS),
        )

    logger.info(
        "iar_updated",
        report_id=str(report.id),
        items_changed=len(changes),
        overall_result=report.overall_result,
    )
    return report

