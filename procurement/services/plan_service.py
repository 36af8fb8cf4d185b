"""PPMP authoring: plans and their lines."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.exceptions import ValidationError
from procurement.models.ledger import LedgerEntry
from procurement.models.plan import Plan, PlanLine
from procurement.schemas.plan import PlanCreate, PlanImportRequest, PlanLineCreate, PlanUpdate
from procurement.services import ledger_service, plan_import
from procurement.services.audit_service import create_audit_log, snapshot
from procurement.services.lookup import as_optional_uuid, as_uuid, fetch_page, get_or_raise
from procurement.services.policy import Actor, ensure_capability
from procurement.services.transaction import atomic

logger = structlog.get_logger()

_AUDIT_FIELDS = ("fiscal_year", "title", "department_id", "total_budget_cents")

_LINE_FIELDS = (
    "name",
    "description",
    "unit",
    "category",
    "planned_quantity",
    "planned_unit_cost_cents",
    "planned_total_cents",
    "schedule_quarter",
    "procurement_method",
)


def _line_values(line: PlanLineCreate) -> dict:
    values = line.model_dump(include=set(_LINE_FIELDS))
    if values["planned_total_cents"] is None:
        values["planned_total_cents"] = line.planned_quantity * line.planned_unit_cost_cents
    return values


def _new_line(plan_id: uuid.UUID, line_number: int, line: PlanLineCreate) -> PlanLine:
    values = _line_values(line)
    return PlanLine(
        plan_id=plan_id,
        line_number=line_number,
        remaining_quantity=values["planned_quantity"],
        remaining_budget_cents=values["planned_total_cents"],
        **values,
    )


async def _referenced_line_ids(session: AsyncSession, line_ids: list[uuid.UUID]) -> set[uuid.UUID]:
    """Plan lines that a request has ever drawn on."""
    if not line_ids:
        return set()
    result = await session.execute(
        select(LedgerEntry.subject_id)
        .where(
            LedgerEntry.subject_type == ledger_service.SUBJECT_PLAN_LINE,
            LedgerEntry.subject_id.in_(line_ids),
        )
        .distinct()
    )
    return set(result.scalars().all())


async def create_plan(session: AsyncSession, actor: Actor, data: PlanCreate) -> Plan:
    ensure_capability(actor, "plan:create")
    if not data.lines:
        raise ValidationError("A plan needs at least one line")

    async with atomic(session, "plan_create") as unit:
        plan = Plan(
            fiscal_year=data.fiscal_year,
            department_id=as_optional_uuid(data.department_id, "department_id"),
            title=data.title,
            source_file_name=data.source_file_name,
            total_budget_cents=0,
            created_by=actor.user_id,
        )
        session.add(plan)
        await session.flush()
        unit.track(plan)

        total = 0
        for line_number, line in enumerate(data.lines, start=1):
            plan_line = _new_line(plan.id, line_number, line)
            session.add(plan_line)
            total += plan_line.planned_total_cents

        plan.total_budget_cents = total
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PLAN_CREATED",
            entity_type="PLAN",
            entity_id=plan.id,
            after_state={"fiscal_year": plan.fiscal_year, "total_budget_cents": total},
        )

    logger.info(
        "plan_created",
        plan_id=str(plan.id),
        lines=len(data.lines),
        total_budget_cents=plan.total_budget_cents,
    )
    return plan


async def import_plan(
    session: AsyncSession, actor: Actor, data: PlanImportRequest
) -> Plan:
    ensure_capability(actor, "plan:create")
    if data.csv_content:
        lines = plan_import.parse_plan_csv(data.csv_content)
    elif data.rows:
        lines = plan_import.rows_to_plan_lines(data.rows)
    else:
        raise ValidationError("Provide csv_content or rows to import")

    if not lines:
        raise ValidationError("No importable rows found")

    return await create_plan(
        session,
        actor,
        PlanCreate(
            fiscal_year=data.fiscal_year,
            title=data.title,
            department_id=data.department_id,
            source_file_name=data.source_file_name,
            lines=lines,
        ),
    )


async def get_plan(session: AsyncSession, plan_id) -> Plan:
    return await get_or_raise(session, Plan, plan_id)


async def get_plan_lines(session: AsyncSession, plan_id: uuid.UUID) -> list[PlanLine]:
    result = await session.execute(
        select(PlanLine).where(PlanLine.plan_id == plan_id).order_by(PlanLine.line_number)
    )
    return list(result.scalars().all())


async def list_plans(
    session: AsyncSession, fiscal_year: Optional[int] = None, page: int = 1, limit: int = 50
) -> tuple[list[Plan], int]:
    q = select(Plan)
    if fiscal_year:
        q = q.where(Plan.fiscal_year == fiscal_year)
    return await fetch_page(session, q.order_by(Plan.created_at.desc()), page, limit)


async def update_plan(
    session: AsyncSession, actor: Actor, plan_id, data: PlanUpdate
) -> Plan:
    """Edit a plan header and replace its line set.

    Lines sent with an ``id`` are matched to the existing ones, lines without
    one are appended and existing lines left out are deleted. A line that a
    purchase request has drawn on must come back unchanged.
    """
    ensure_capability(actor, "plan:create")
    plan = await get_or_raise(session, Plan, plan_id, for_update=True)
    existing = {line.id: line for line in await get_plan_lines(session, plan.id)}

    kept: dict[uuid.UUID, dict] = {}
    if data.lines is not None:
        if not data.lines:
            raise ValidationError("A plan needs at least one line")
        referenced = await _referenced_line_ids(session, list(existing))
        for incoming in data.lines:
            if incoming.id is None:
                continue
            line_id = as_uuid(incoming.id, "id")
            line = existing.get(line_id)
            if line is None or line_id in kept:
                raise ValidationError(
                    "Line does not belong to this plan", {"plan_line_id": incoming.id}
                )
            values = _line_values(incoming)
            if line_id in referenced and any(
                getattr(line, name) != value for name, value in values.items()
            ):
                raise ValidationError(
                    "A plan line already drawn on by a request cannot be changed",
                    {"plan_line_id": incoming.id},
                )
            kept[line_id] = values
        for line_id in existing:
            if line_id in referenced and line_id not in kept:
                raise ValidationError(
                    "A plan line already drawn on by a request cannot be removed",
                    {"plan_line_id": str(line_id)},
                )

    async with atomic(session, "plan_update"):
        before = snapshot(plan, _AUDIT_FIELDS)
        for field in ("fiscal_year", "title"):
            value = getattr(data, field)
            if value is not None:
                setattr(plan, field, value)
        if "department_id" in data.model_fields_set:
            plan.department_id = as_optional_uuid(data.department_id, "department_id")

        added = removed = 0
        if data.lines is not None:
            for line_id, line in existing.items():
                values = kept.get(line_id)
                if values is None:
                    await session.delete(line)
                    removed += 1
                    continue
                if line_id in referenced:
                    continue
                for name, value in values.items():
                    setattr(line, name, value)
                line.remaining_quantity = values["planned_quantity"]
                line.remaining_budget_cents = values["planned_total_cents"]

            next_number = max((line.line_number for line in existing.values()), default=0)
            for incoming in data.lines:
                if incoming.id is None:
                    next_number += 1
                    session.add(_new_line(plan.id, next_number, incoming))
                    added += 1
            await session.flush()

        lines = await get_plan_lines(session, plan.id)
        plan.total_budget_cents = sum(line.planned_total_cents for line in lines)
        await session.flush()

        await create_audit_log(
            session,
            actor_id=actor.user_id,
            action="PLAN_UPDATED",
            entity_type="PLAN",
            entity_id=plan.id,
            before_state=before,
            after_state=snapshot(plan, _AUDIT_FIELDS),
        )

    logger.info(
        "plan_updated",
        plan_id=str(plan.id),
        lines_added=added,
        lines_removed=removed,
        total_budget_cents=plan.total_budget_cents,
    )
    return plan
