from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.database import get_db
from procurement.middleware.auth import get_current_actor
from procurement.models.plan import Plan, PlanLine
from procurement.schemas.common import PaginatedResponse, build_pagination
from procurement.schemas.plan import (
    PlanCreate,
    PlanImportRequest,
    PlanLineResponse,
    PlanResponse,
    PlanUpdate,
)
from procurement.schemas.variance import PlanVarianceResponse
from procurement.services import plan_service, variance_service
from procurement.services.policy import Actor
from procurement.services.transaction import call_with_transient_retry

logger = structlog.get_logger()
router = APIRouter()


def _line_to_response(line: PlanLine) -> PlanLineResponse:
    return PlanLineResponse(
        id=str(line.id),
        line_number=line.line_number,
        name=line.name,
        description=line.description,
        unit=line.unit,
        category=line.category,
        planned_quantity=line.planned_quantity,
        planned_unit_cost_cents=line.planned_unit_cost_cents,
        planned_total_cents=line.planned_total_cents,
        remaining_quantity=line.remaining_quantity,
        remaining_budget_cents=line.remaining_budget_cents,
        schedule_quarter=line.schedule_quarter,
        procurement_method=line.procurement_method,
        version=line.version,
    )


def _to_response(plan: Plan, lines: list[PlanLine]) -> PlanResponse:
    return PlanResponse(
        id=str(plan.id),
        fiscal_year=plan.fiscal_year,
        department_id=str(plan.department_id) if plan.department_id else None,
        title=plan.title,
        source_file_name=plan.source_file_name,
        total_budget_cents=plan.total_budget_cents,
        created_by=str(plan.created_by),
        lines=[_line_to_response(line) for line in lines],
        created_at=plan.created_at.isoformat() if plan.created_at else "",
    )


@router.get("", response_model=PaginatedResponse[PlanResponse])
async def list_plans(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    fiscal_year: int = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    plans, total = await plan_service.list_plans(db, fiscal_year, page, limit)
    meta = build_pagination(page, limit, total)
    items = [_to_response(p, await plan_service.get_plan_lines(db, p.id)) for p in plans]
    return PaginatedResponse(data=items, pagination=meta)


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    plan = await plan_service.get_plan(db, plan_id)
    return _to_response(plan, await plan_service.get_plan_lines(db, plan.id))


@router.post("", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    body: PlanCreate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    plan = await call_with_transient_retry(plan_service.create_plan, db, actor, body)
    return _to_response(plan, await plan_service.get_plan_lines(db, plan.id))


@router.put("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: str,
    body: PlanUpdate,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    plan = await call_with_transient_retry(plan_service.update_plan, db, actor, plan_id, body)
    return _to_response(plan, await plan_service.get_plan_lines(db, plan.id))


@router.post("/import", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def import_plan(
    body: PlanImportRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    plan = await call_with_transient_retry(plan_service.import_plan, db, actor, body)
    lines = await plan_service.get_plan_lines(db, plan.id)
    logger.info("plan_imported", plan_id=str(plan.id), source=body.source_file_name, lines=len(lines))
    return _to_response(plan, lines)


@router.get("/{plan_id}/variance", response_model=PlanVarianceResponse)
async def get_plan_variance(
    plan_id: str,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await variance_service.plan_variance_report(db, plan_id)
