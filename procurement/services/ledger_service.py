"""
Ledger service: the only writer of remainder fields.

  PlanLine.remaining_quantity / remaining_budget_cents   (consumed by PR lines)
  PoLineItem.delivered_quantity / remaining_quantity     (consumed by IAR items)

Every change is also appended to ``ledger_entries`` with the signed delta it
applied to the remainder, keyed by the document line that caused it. The sum
of a source's entries is therefore exactly what that source still holds,
which is what release and re-inspection diff against.

All functions use the caller's session (no commit).
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.exceptions import InsufficientRemainder, NotFound, ValidationError
from procurement.models.ledger import LedgerEntry
from procurement.models.plan import PlanLine
from procurement.models.purchase_order import PoLineItem
from procurement.models.purchase_request import PrLineItem

logger = structlog.get_logger()

SUBJECT_PLAN_LINE = "PLAN_LINE"
SUBJECT_ORDER_LINE = "ORDER_LINE"

SOURCE_REQUEST_LINE = "REQUEST_LINE"
SOURCE_INSPECTION_ITEM = "INSPECTION_ITEM"
SOURCE_ORDER_LINE = "ORDER_LINE"


def decrement_remaining(
    entity,
    quantity_delta: int,
    budget_delta_cents: Optional[int] = None,
    subject: str = "line",
):
    """Check-then-apply a decrement on ``entity``'s remainder fields.

    Nothing is mutated unless both the quantity and (when given) the budget
    decrement fit inside what remains.
    """
    if quantity_delta < 0 or (budget_delta_cents is not None and budget_delta_cents < 0):
        raise ValidationError(
            "Ledger decrements must be non-negative",
            {"quantity_delta": quantity_delta, "budget_delta_cents": budget_delta_cents},
        )

    available_quantity = entity.remaining_quantity or 0
    available_budget = None
    if budget_delta_cents is not None:
        available_budget = entity.remaining_budget_cents or 0

    if quantity_delta > available_quantity or (
        available_budget is not None and budget_delta_cents > available_budget
    ):
        raise InsufficientRemainder(
            subject=subject,
            requested_quantity=quantity_delta,
            available_quantity=available_quantity,
            requested_budget_cents=budget_delta_cents,
            available_budget_cents=available_budget,
        )

    entity.remaining_quantity = available_quantity - quantity_delta
    if budget_delta_cents is not None:
        entity.remaining_budget_cents = available_budget - budget_delta_cents
    return entity


async def get_plan_line_for_update(
    session: AsyncSession, plan_line_id: uuid.UUID
) -> PlanLine:
    result = await session.execute(
        select(PlanLine).where(PlanLine.id == plan_line_id).with_for_update()
    )
    plan_line = result.scalar_one_or_none()
    if not plan_line:
        raise NotFound("PlanLine", plan_line_id)
    return plan_line


async def _held_by_source(
    session: AsyncSession,
    subject_type: str,
    subject_id: uuid.UUID,
    source_type: str,
    source_id: uuid.UUID,
    entry_types: tuple[str, ...],
) -> tuple[int, int]:
    """(quantity, budget) a source currently holds against a subject."""
    result = await session.execute(
        select(
            func.coalesce(func.sum(LedgerEntry.quantity_delta), 0),
            func.coalesce(func.sum(LedgerEntry.budget_delta_cents), 0),
        ).where(
            LedgerEntry.subject_type == subject_type,
            LedgerEntry.subject_id == subject_id,
            LedgerEntry.source_type == source_type,
            LedgerEntry.source_id == source_id,
            LedgerEntry.entry_type.in_(entry_types),
        )
    )
    quantity_delta, budget_delta = result.one()
    return -int(quantity_delta or 0), -int(budget_delta or 0)


def _entry(
    subject_type: str,
    subject_id: uuid.UUID,
    source_type: str,
    source_id: uuid.UUID,
    entry_type: str,
    quantity_delta: int,
    budget_delta_cents: int,
    actor_id: Optional[uuid.UUID],
) -> LedgerEntry:
    return LedgerEntry(
        subject_type=subject_type,
        subject_id=subject_id,
        source_type=source_type,
        source_id=source_id,
        entry_type=entry_type,
        quantity_delta=quantity_delta,
        budget_delta_cents=budget_delta_cents,
        actor_id=actor_id,
    )


async def consume_plan_line(
    session: AsyncSession,
    plan_line: PlanLine,
    request_line: PrLineItem,
    actor_id: Optional[uuid.UUID],
) -> LedgerEntry:
    """Take a request line's quantity and cost out of its plan line."""
    decrement_remaining(
        plan_line,
        request_line.quantity,
        request_line.total_cost_cents,
        subject=f"PlanLine {plan_line.id}",
    )
    entry = _entry(
        SUBJECT_PLAN_LINE,
        plan_line.id,
        SOURCE_REQUEST_LINE,
        request_line.id,
        "CONSUME",
        -request_line.quantity,
        -request_line.total_cost_cents,
        actor_id,
    )
    session.add(entry)
    await session.flush()

    logger.info(
        "ledger_plan_line_consumed",
        plan_line_id=str(plan_line.id),
        request_line_id=str(request_line.id),
        quantity=request_line.quantity,
        budget_cents=request_line.total_cost_cents,
        remaining_quantity=plan_line.remaining_quantity,
        remaining_budget_cents=plan_line.remaining_budget_cents,
    )
    return entry


async def release_plan_consumption(
    session: AsyncSession,
    request_line: PrLineItem,
    actor_id: Optional[uuid.UUID],
) -> bool:
    """Give back whatever a request line still holds on its plan line.

    Returns False when there was nothing to release (no plan link, or
    already released).
    """
    if request_line.plan_line_id is None or request_line.released_at is not None:
        return False

    held_quantity, held_budget = await _held_by_source(
        session,
        SUBJECT_PLAN_LINE,
        request_line.plan_line_id,
        SOURCE_REQUEST_LINE,
        request_line.id,
        ("CONSUME", "RELEASE"),
    )
    request_line.released_at = datetime.utcnow()
    if held_quantity == 0 and held_budget == 0:
        await session.flush()
        return False

    plan_line = await get_plan_line_for_update(session, request_line.plan_line_id)
    plan_line.remaining_quantity += held_quantity
    plan_line.remaining_budget_cents += held_budget
    session.add(
        _entry(
            SUBJECT_PLAN_LINE,
            plan_line.id,
            SOURCE_REQUEST_LINE,
            request_line.id,
            "RELEASE",
            held_quantity,
            held_budget,
            actor_id,
        )
    )
    await session.flush()

    logger.info(
        "ledger_plan_line_released",
        plan_line_id=str(plan_line.id),
        request_line_id=str(request_line.id),
        quantity=held_quantity,
        budget_cents=held_budget,
    )
    return True


async def delivered_by_item(
    session: AsyncSession, order_line_id: uuid.UUID, inspection_item_id: uuid.UUID
) -> int:
    quantity, _ = await _held_by_source(
        session,
        SUBJECT_ORDER_LINE,
        order_line_id,
        SOURCE_INSPECTION_ITEM,
        inspection_item_id,
        ("DELIVER",),
    )
    return quantity


async def apply_delivery(
    session: AsyncSession,
    order_line: PoLineItem,
    inspection_item_id: uuid.UUID,
    accepted_quantity: int,
    actor_id: Optional[uuid.UUID],
) -> int:
    """Bring an order line in line with an inspection item's accepted quantity.

    Only the difference from what this item already delivered is applied,
    so re-saving an edited report never double counts. Rejected quantity is
    never delivered and stays in ``remaining_quantity``, except on a cancelled
    line, whose remainder stays 0. Returns the delta.
    """
    previous = await delivered_by_item(session, order_line.id, inspection_item_id)
    delta = accepted_quantity - previous
    if delta == 0:
        return 0

    delivered = order_line.delivered_quantity or 0
    if delta > 0:
        decrement_remaining(order_line, delta, subject=f"PoLineItem {order_line.id}")
    elif -delta > delivered:
        raise ValidationError(
            "Cannot reverse more than was delivered",
            {"order_line_id": str(order_line.id), "delivered": delivered, "delta": delta},
        )
    else:
        order_line.remaining_quantity = (order_line.remaining_quantity or 0) - delta

    order_line.delivered_quantity = delivered + delta
    session.add(
        _entry(
            SUBJECT_ORDER_LINE,
            order_line.id,
            SOURCE_INSPECTION_ITEM,
            inspection_item_id,
            "DELIVER",
            -delta,
            0,
            actor_id,
        )
    )
    if order_line.cancelled:
        # Units handed back on a cancelled line stay withdrawn
        session.add(
            _entry(
                SUBJECT_ORDER_LINE,
                order_line.id,
                SOURCE_ORDER_LINE,
                order_line.id,
                "CANCEL",
                -order_line.remaining_quantity,
                0,
                actor_id,
            )
        )
        order_line.remaining_quantity = 0
    await session.flush()

    logger.info(
        "ledger_order_line_delivery_applied",
        order_line_id=str(order_line.id),
        inspection_item_id=str(inspection_item_id),
        delta=delta,
        delivered_quantity=order_line.delivered_quantity,
        remaining_quantity=order_line.remaining_quantity,
    )
    return delta


async def cancel_order_line(
    session: AsyncSession,
    order_line: PoLineItem,
    actor_id: Optional[uuid.UUID],
) -> LedgerEntry:
    """Zero an order line's remainder and remove it from inspection."""
    if order_line.cancelled:
        raise ValidationError(
            "Order line is already cancelled", {"order_line_id": str(order_line.id)}
        )

    outstanding = order_line.remaining_quantity or 0
    order_line.remaining_quantity = 0
    order_line.cancelled = True
    entry = _entry(
        SUBJECT_ORDER_LINE,
        order_line.id,
        SOURCE_ORDER_LINE,
        order_line.id,
        "CANCEL",
        -outstanding,
        0,
        actor_id,
    )
    session.add(entry)
    await session.flush()

    logger.info(
        "ledger_order_line_cancelled",
        order_line_id=str(order_line.id),
        quantity_withdrawn=outstanding,
    )
    return entry
