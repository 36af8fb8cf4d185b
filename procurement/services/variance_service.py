"""
Variance analysis: planned PPMP amounts against what was actually spent.

The actual figure for a plan line is the most downstream amount available:
paid (vouchered) deliveries, then ordered amounts, then requested amounts.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.inspection import InspectionItem
from procurement.models.plan import PlanLine
from procurement.models.purchase_order import PurchaseOrder, PoLineItem
from procurement.models.purchase_request import PurchaseRequest, PrLineItem
from procurement.models.voucher import DisbursementVoucher
from procurement.services.plan_service import get_plan, get_plan_lines

logger = structlog.get_logger()

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class VarianceInfo:
    actual_cents: int
    variance_cents: int
    variance_percentage: Optional[Decimal]
    status: str


def calculate_variance(
    planned_cents: int,
    pr_actual_cents: Optional[int] = None,
    po_actual_cents: Optional[int] = None,
    dv_actual_cents: Optional[int] = None,
) -> VarianceInfo:
    actual = dv_actual_cents or po_actual_cents or pr_actual_cents or 0
    if actual == 0:
        return VarianceInfo(0, 0, Decimal("0.00"), "No actual data")

    variance = planned_cents - actual
    percentage = None
    if planned_cents:
        percentage = (Decimal(variance) / Decimal(planned_cents) * 100).quantize(
            _TWO_PLACES, rounding=ROUND_HALF_UP
        )

    if variance > 0:
        status = "Savings"
    elif variance < 0:
        status = "Overrun"
    else:
        status = "On Budget"
    return VarianceInfo(actual, variance, percentage, status)


def execution_status(
    pr_actual_cents: int, po_actual_cents: int, dv_actual_cents: int
) -> str:
    if dv_actual_cents:
        return "completed"
    if po_actual_cents:
        return "po_issued"
    if pr_actual_cents:
        return "pr_submitted"
    return "planned"


async def _requested_by_line(session: AsyncSession, plan_id: uuid.UUID) -> dict:
    result = await session.execute(
        select(PrLineItem.plan_line_id, func.sum(PrLineItem.total_cost_cents))
        .join(PlanLine, PlanLine.id == PrLineItem.plan_line_id)
        .join(PurchaseRequest, PurchaseRequest.id == PrLineItem.pr_id)
        .where(PlanLine.plan_id == plan_id, PurchaseRequest.status != "returned")
        .group_by(PrLineItem.plan_line_id)
    )
    return {row[0]: int(row[1] or 0) for row in result.all()}


async def _ordered_by_line(session: AsyncSession, plan_id: uuid.UUID) -> dict:
    result = await session.execute(
        select(PrLineItem.plan_line_id, func.sum(PoLineItem.total_cost_cents))
        .join(PrLineItem, PrLineItem.id == PoLineItem.pr_line_item_id)
        .join(PlanLine, PlanLine.id == PrLineItem.plan_line_id)
        .join(PurchaseOrder, PurchaseOrder.id == PoLineItem.po_id)
        .where(PlanLine.plan_id == plan_id, PurchaseOrder.status != "cancelled")
        .group_by(PrLineItem.plan_line_id)
    )
    return {row[0]: int(row[1] or 0) for row in result.all()}


async def _paid_by_line(session: AsyncSession, plan_id: uuid.UUID) -> dict:
    result = await session.execute(
        select(
            PrLineItem.plan_line_id,
            func.sum(InspectionItem.accepted_quantity * PoLineItem.unit_cost_cents),
        )
        .join(PoLineItem, PoLineItem.id == InspectionItem.po_line_item_id)
        .join(PrLineItem, PrLineItem.id == PoLineItem.pr_line_item_id)
        .join(PlanLine, PlanLine.id == PrLineItem.plan_line_id)
        .join(
            DisbursementVoucher,
            DisbursementVoucher.inspection_report_id == InspectionItem.report_id,
        )
        .where(PlanLine.plan_id == plan_id)
        .group_by(PrLineItem.plan_line_id)
    )
    return {row[0]: int(row[1] or 0) for row in result.all()}


async def plan_variance_report(session: AsyncSession, plan_id) -> dict:
    plan = await get_plan(session, plan_id)
    lines = await get_plan_lines(session, plan.id)
    requested = await _requested_by_line(session, plan.id)
    ordered = await _ordered_by_line(session, plan.id)
    paid = await _paid_by_line(session, plan.id)

    rows = []
    total_planned = 0
    total_actual = 0
    for line in lines:
        pr_cents = requested.get(line.id, 0)
        po_cents = ordered.get(line.id, 0)
        dv_cents = paid.get(line.id, 0)
        info = calculate_variance(line.planned_total_cents, pr_cents, po_cents, dv_cents)
        total_planned += line.planned_total_cents
        total_actual += info.actual_cents
        rows.append(
            {
                "plan_line_id": str(line.id),
                "name": line.name,
                "planned_cents": line.planned_total_cents,
                "pr_actual_cents": pr_cents,
                "po_actual_cents": po_cents,
                "dv_actual_cents": dv_cents,
                "actual_cents": info.actual_cents,
                "variance_cents": info.variance_cents,
                "variance_percentage": info.variance_percentage,
                "status": info.status,
                "execution_status": execution_status(pr_cents, po_cents, dv_cents),
            }
        )

    logger.info(
        "plan_variance_computed",
        plan_id=str(plan.id),
        lines=len(rows),
        planned_cents=total_planned,
        actual_cents=total_actual,
    )
    return {
        "plan_id": str(plan.id),
        "planned_cents": total_planned,
        "actual_cents": total_actual,
        "variance_cents": total_planned - total_actual,
        "lines": rows,
    }
