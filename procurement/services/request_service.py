"""
Purchase requests: creation against the PPMP and status changes.

A request line that references a plan line takes its name, unit, cost and
category from the plan line unless the caller overrides them, and consumes
the plan line's remaining quantity and budget through the ledger. The
request, its lines and all plan-line decrements are one unit of work.

Status flow:
  pending -> for_approval -> approved -> awarded (set by PO creation)
  pending / for_approval / approved -> returned
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.exceptions import InvalidStatusTransition, ValidationError
from procurement.models.purchase_request import PurchaseRequest, PrLineItem
from procurement.schemas.purchase_request import PurchaseRequestCreate
from procurement.services import ledger_service
from procurement.services.audit_service import create_audit_log, snapshot
from procurement.services.lookup import as_optional_uuid, fetch_page, get_or_raise
from procurement.services.numbering import PR_PREFIX, generate_document_number
from procurement.services.policy import Actor, ensure_capability
from procurement.services.transaction import atomic, check_version

logger = structlog.get_logger()

PR_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"for_approval", "approved", "returned"}),
    "for_approval": frozenset({"approved", "returned"}),
    "approved": frozenset({"awarded", "returned"}),
    "awarded": frozenset(),
    "returned": frozenset(),
}

_AUDIT_FIELDS = ("status", "approved_by", "approved_at", "return_reason", "total_cents")


def check_pr_transition(current: str, target: str) -> None:
    if target not in PR_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusTransition("PurchaseRequest", current, target)


async def get_purchase_request(
    session: AsyncSession, pr_id, for_update: bool = False
) -> PurchaseRequest:
    return await get_or_raise(session, PurchaseRequest, pr_id, for_update=for_update)


async def get_request_lines(
    session: AsyncSession, pr_id: uuid.UUID
) -> list[PrLineItem]:
    result = await session.execute(
        select(PrLineItem).where(PrLineItem.pr_id == pr_id).order_by(PrLineItem.line_number)
    )
    return list(result.scalars().all())


async def list_purchase_requests(
    session: AsyncSession, status: Optional[str] = None, page: int = 1, limit: int = 50
) -> tuple[list[PurchaseRequest], int]:
    q = select(PurchaseRequest)
    if status:
        q = q.where(PurchaseRequest.status == status)
    return await fetch_page(session, q.order_by(PurchaseRequest.created_at.desc()), page, limit)


async def create_purchase_request(
    session: AsyncSession, actor: Actor, data: PurchaseRequestCreate
) -> PurchaseRequest:
    ensure_capability(actor, "pr:create")
    if not data.line_items:
        raise ValidationError("A purchase request needs at least one line item")

    async with atomic(session, "pr_create") as unit:
        pr = PurchaseRequest(
            pr_number=generate_document_number(PR_PREFIX),
            purpose=data.purpose,
            department_id=as_optional_uuid(data.department_id, "department_id"),
            plan_id=as_optional_uuid(data.plan_id, "plan_id"),
            requested_by=actor.user_id,
            status="pending",
            total_cents=0,
        )
        session.add(pr)
        await session.flush()
        unit.track(pr)

        total = 0
        for line_number, item in enumerate(data.line_items, start=1):
            plan_line = None
            plan_line_id = as_optional_uuid(item.plan_line_id, "plan_line_id")
            if plan_line_id:
                plan_line = await ledger_service.get_plan_line_for_update(session, plan_line_id)

            name = item.name or (plan_line.name if plan_line else None)
            unit_cost = item.unit_cost_cents
            if unit_cost is None and plan_line is not None:
                unit_cost = plan_line.planned_unit_cost_cents
            if not name or unit_cost is None:
                raise ValidationError(
                    f"Line {line_number}: name and unit cost are required "
                    "when the line is not linked to a plan item",
                    {"line_number": line_number},
                )

            total_cost = item.total_cost_cents
            if total_cost is None:
                total_cost = item.quantity * unit_cost

            pr_line = PrLineItem(
                pr_id=pr.id,
                line_number=line_number,
                plan_line_id=plan_line_id,
                name=name,
                description=item.description
                or (plan_line.description if plan_line else None),
                unit=item.unit or (plan_line.unit if plan_line else "pcs"),
                quantity=item.quantity,
                unit_cost_cents=unit_cost,
                total_cost_cents=total_cost,
                category=item.category or (plan_line.category if plan_line else None),
            )
            session.add(pr_line)
            await session.flush()
            unit.track(pr_line)

            if plan_line is not None:
                await ledger_service.consume_plan_line(
                    session, plan_line, pr_line, actor.user_id
                )
            total += total_cost

        pr.total_cents = total
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PR_CREATED",
            entity_type="PR",
            entity_id=pr.id,
            after_state=snapshot(pr, _AUDIT_FIELDS),
        )

    logger.info(
        "pr_created",
        pr_id=str(pr.id),
        pr_number=pr.pr_number,
        lines=len(data.line_items),
        total_cents=pr.total_cents,
    )
    return pr


async def _change_status(
    session: AsyncSession,
    actor: Actor,
    pr_id,
    target: str,
    action: str,
    expected_version: Optional[int] = None,
    reason: Optional[str] = None,
) -> PurchaseRequest:
    pr = await get_purchase_request(session, pr_id, for_update=True)
    check_version(pr, expected_version, "PurchaseRequest")
    check_pr_transition(pr.status, target)

    async with atomic(session, action.lower()):
        before = snapshot(pr, _AUDIT_FIELDS)
        pr.status = target
        if target == "approved":
            pr.approved_by = actor.user_id
            pr.approved_at = datetime.utcnow()
        elif target == "returned":
            pr.return_reason = reason
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action=action,
            entity_type="PR",
            entity_id=pr.id,
            before_state=before,
            after_state=snapshot(pr, _AUDIT_FIELDS),
        )

    logger.info("pr_status_changed", pr_id=str(pr.id), status=target, by=str(actor.user_id))
    return pr


async def submit_purchase_request(
    session: AsyncSession, actor: Actor, pr_id, expected_version: Optional[int] = None
) -> PurchaseRequest:
    ensure_capability(actor, "pr:submit")
    return await _change_status(
        session, actor, pr_id, "for_approval", "PR_SUBMITTED", expected_version
    )


async def approve_purchase_request(
    session: AsyncSession, actor: Actor, pr_id, expected_version: Optional[int] = None
) -> PurchaseRequest:
    ensure_capability(actor, "pr:approve")
    return await _change_status(
        session, actor, pr_id, "approved", "PR_APPROVED", expected_version
    )


async def return_purchase_request(
    session: AsyncSession,
    actor: Actor,
    pr_id,
    reason: str,
    expected_version: Optional[int] = None,
) -> PurchaseRequest:
    ensure_capability(actor, "pr:return")
    return await _change_status(
        session, actor, pr_id, "returned", "PR_RETURNED", expected_version, reason=reason
    )


async def release_purchase_request(
    session: AsyncSession, actor: Actor, pr_id
) -> PurchaseRequest:
    """Hand a returned request's plan consumption back to the PPMP."""
    ensure_capability(actor, "pr:release")
    pr = await get_purchase_request(session, pr_id, for_update=True)
    if pr.status != "returned":
        raise ValidationError(
            "Only returned purchase requests can release their plan consumption",
            {"status": pr.status},
        )

    released = 0
    async with atomic(session, "pr_release"):
        for line in await get_request_lines(session, pr.id):
            if await ledger_service.release_plan_consumption(session, line, actor.user_id):
                released += 1

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PR_RELEASED",
            entity_type="PR",
            entity_id=pr.id,
            after_state={"released_lines": released},
        )

    logger.info("pr_plan_consumption_released", pr_id=str(pr.id), lines=released)
    return pr
