"""
Purchase orders: conversion of an approved request and order lifecycle.

Conversion copies the chosen request lines into order lines with nothing
delivered yet, totals them, and awards the request. The order row, its lines
and the request status change are one unit of work: if anything after the
order insert fails, the savepoint is rolled back and nothing survives.
"""

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.exceptions import (
    EmptySelection,
    InvalidStatusTransition,
    ValidationError,
)
from procurement.models.purchase_order import PurchaseOrder, PoLineItem
from procurement.models.purchase_request import PrLineItem
from procurement.schemas.purchase_order import PurchaseOrderCreate
from procurement.services import ledger_service
from procurement.services.audit_service import create_audit_log, snapshot
from procurement.services.lookup import as_uuid, fetch_page, get_or_raise
from procurement.services.numbering import PO_PREFIX, generate_document_number
from procurement.services.policy import Actor, ensure_capability
from procurement.services.request_service import (
    check_pr_transition,
    get_purchase_request,
)
from procurement.services.transaction import atomic, check_version

logger = structlog.get_logger()

PO_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"approved", "cancelled"}),
    "approved": frozenset({"cancelled"}),
    "cancelled": frozenset(),
}

_AUDIT_FIELDS = ("status", "supplier_name", "total_cents", "approved_at")


def check_po_transition(current: str, target: str) -> None:
    if target not in PO_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition("PurchaseOrder", current, target)


def derive_delivery_status(lines: Iterable[PoLineItem]) -> str:
    """Delivery status from line figures. Cancelled lines are ignored."""
    open_lines = [line for line in lines if not line.cancelled]
    delivered = sum(line.delivered_quantity or 0 for line in open_lines)
    if not open_lines or delivered == 0:
        return "not_delivered"
    if all((line.remaining_quantity or 0) == 0 for line in open_lines):
        return "fully_delivered"
    return "partially_delivered"


async def get_purchase_order(
    session: AsyncSession, po_id, for_update: bool = False
) -> PurchaseOrder:
    return await get_or_raise(session, PurchaseOrder, po_id, for_update=for_update)


async def get_order_lines(session: AsyncSession, po_id) -> list[PoLineItem]:
    result = await session.execute(
        select(PoLineItem)
        .where(PoLineItem.po_id == as_uuid(po_id, "po_id"))
        .order_by(PoLineItem.line_number)
    )
    return list(result.scalars().all())


async def list_purchase_orders(
    session: AsyncSession, status: Optional[str] = None, page: int = 1, limit: int = 50
) -> tuple[list[PurchaseOrder], int]:
    q = select(PurchaseOrder)
    if status:
        q = q.where(PurchaseOrder.status == status)
    return await fetch_page(session, q.order_by(PurchaseOrder.created_at.desc()), page, limit)


async def create_purchase_order(
    session: AsyncSession, actor: Actor, data: PurchaseOrderCreate
) -> PurchaseOrder:
    ensure_capability(actor, "po:create")
    if not data.line_item_ids:
        raise EmptySelection()
    if not data.supplier_name or not data.supplier_name.strip():
        raise ValidationError("Supplier name is required", {"field": "supplier_name"})

    selected_ids = [as_uuid(line_id, "line_item_ids") for line_id in data.line_item_ids]
    if len(set(selected_ids)) != len(selected_ids):
        raise ValidationError("A request line can only be selected once")

    pr = await get_purchase_request(session, data.pr_id, for_update=True)
    check_pr_transition(pr.status, "awarded")

    result = await session.execute(
        select(PrLineItem)
        .where(PrLineItem.pr_id == pr.id, PrLineItem.id.in_(selected_ids))
        .order_by(PrLineItem.line_number)
    )
    chosen = list(result.scalars().all())
    if len(chosen) != len(selected_ids):
        found = {line.id for line in chosen}
        raise ValidationError(
            "Selected lines do not belong to this purchase request",
            {"line_item_ids": [str(i) for i in selected_ids if i not in found]},
        )

    async with atomic(session, "po_create") as unit:
        po = PurchaseOrder(
            po_number=generate_document_number(PO_PREFIX),
            pr_id=pr.id,
            supplier_name=data.supplier_name.strip(),
            supplier_address=data.supplier_address,
            supplier_contact=data.supplier_contact,
            terms_conditions=data.terms_conditions,
            delivery_date=data.delivery_date,
            status="pending",
            total_cents=sum(line.total_cost_cents for line in chosen),
            created_by=actor.user_id,
        )
        session.add(po)
        await session.flush()
        unit.track(po)

        for line_number, pr_line in enumerate(chosen, start=1):
            po_line = PoLineItem(
                po_id=po.id,
                pr_line_item_id=pr_line.id,
                line_number=line_number,
                quantity=pr_line.quantity,
                unit_cost_cents=pr_line.unit_cost_cents,
                total_cost_cents=pr_line.total_cost_cents,
                delivered_quantity=0,
                remaining_quantity=pr_line.quantity,
                cancelled=False,
            )
            session.add(po_line)
            await session.flush()
            unit.track(po_line)

        pr_before = {"status": pr.status}
        pr.status = "awarded"
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PO_CREATED",
            entity_type="PO",
            entity_id=po.id,
            after_state=snapshot(po, _AUDIT_FIELDS),
        )
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PR_AWARDED",
            entity_type="PR",
            entity_id=pr.id,
            before_state=pr_before,
            after_state={"status": pr.status},
        )

    logger.info(
        "po_created",
        po_id=str(po.id),
        po_number=po.po_number,
        pr_id=str(pr.id),
        lines=len(chosen),
        total_cents=po.total_cents,
    )
    return po


async def approve_purchase_order(
    session: AsyncSession, actor: Actor, po_id, expected_version: Optional[int] = None
) -> PurchaseOrder:
    ensure_capability(actor, "po:approve")
    po = await get_purchase_order(session, po_id, for_update=True)
    check_version(po, expected_version, "PurchaseOrder")
    check_po_transition(po.status, "approved")

    async with atomic(session, "po_approve"):
        before = snapshot(po, _AUDIT_FIELDS)
        po.status = "approved"
        po.approved_at = datetime.utcnow()
        await session.flush()
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PO_APPROVED",
            entity_type="PO",
            entity_id=po.id,
            before_state=before,
            after_state=snapshot(po, _AUDIT_FIELDS),
        )

    logger.info("po_approved", po_id=str(po.id), by=str(actor.user_id))
    return po


async def cancel_purchase_order(
    session: AsyncSession,
    actor: Actor,
    po_id,
    expected_version: Optional[int] = None,
    reason: Optional[str] = None,
) -> PurchaseOrder:
    ensure_capability(actor, "po:cancel")
    po = await get_purchase_order(session, po_id, for_update=True)
    check_version(po, expected_version, "PurchaseOrder")
    check_po_transition(po.status, "cancelled")

    lines = await get_order_lines(session, po.id)
    if any((line.delivered_quantity or 0) > 0 for line in lines):
        raise ValidationError(
            "Cannot cancel a purchase order with accepted deliveries",
            {"po_id": str(po.id)},
        )

    async with atomic(session, "po_cancel"):
        before = snapshot(po, _AUDIT_FIELDS)
        for line in lines:
            if not line.cancelled:
                await ledger_service.cancel_order_line(session, line, actor.user_id)
        po.status = "cancelled"
        await session.flush()
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PO_CANCELLED",
            entity_type="PO",
            entity_id=po.id,
            before_state=before,
            after_state={**snapshot(po, _AUDIT_FIELDS), "reason": reason},
        )

    logger.info("po_cancelled", po_id=str(po.id), by=str(actor.user_id), reason=reason)
    return po


async def cancel_order_line(
    session: AsyncSession, actor: Actor, po_id, line_id
) -> PoLineItem:
    """Withdraw the undelivered part of one order line from inspection."""
    ensure_capability(actor, "po:cancel")
    po = await get_purchase_order(session, po_id)
    if po.status == "cancelled":
        raise ValidationError("Purchase order is already cancelled", {"po_id": str(po.id)})

    line = await get_or_raise(session, PoLineItem, line_id, for_update=True)
    if line.po_id != po.id:
        raise ValidationError(
            "Line does not belong to this purchase order",
            {"po_id": str(po.id), "line_id": str(line.id)},
        )

    async with atomic(session, "po_line_cancel"):
        withdrawn = line.remaining_quantity
        await ledger_service.cancel_order_line(session, line, actor.user_id)
        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PO_LINE_CANCELLED",
            entity_type="PO",
            entity_id=po.id,
            before_state={"line_id": str(line.id), "remaining_quantity": withdrawn},
            after_state={"line_id": str(line.id), "remaining_quantity": 0},
        )

    return line
