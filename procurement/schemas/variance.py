from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel


class PlanLineVarianceResponse(BaseModel):
    plan_line_id: str
    name: str
    planned_cents: int
    pr_actual_cents: int
    po_actual_cents: int
    dv_actual_cents: int
    actual_cents: int
    variance_cents: int
    variance_percentage: Optional[Decimal] = None
    status: str
    execution_status: str


class PlanVarianceResponse(BaseModel):
    plan_id: str
    planned_cents: int
    actual_cents: int
    variance_cents: int
    lines: List[PlanLineVarianceResponse] = []
