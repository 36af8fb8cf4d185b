from typing import Any, List, Optional
from pydantic import BaseModel, Field


class PlanLineCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=1000)
    description: Optional[str] = None
    unit: str = "pcs"
    category: str = "MOOE"
    planned_quantity: int = Field(..., ge=0)
    planned_unit_cost_cents: int = Field(..., ge=0)
    planned_total_cents: Optional[int] = Field(None, ge=0)
    schedule_quarter: Optional[str] = None
    procurement_method: Optional[str] = None


class PlanCreate(BaseModel):
    fiscal_year: int = Field(..., ge=2000, le=2100)
    title: str = Field(..., min_length=1, max_length=255)
    department_id: Optional[str] = None
    source_file_name: Optional[str] = None
    lines: List[PlanLineCreate] = Field(..., min_length=1)


class PlanLineUpdate(PlanLineCreate):
    """A line in a plan edit; ``id`` matches an existing line, none adds one."""

    id: Optional[str] = None


class PlanUpdate(BaseModel):
    fiscal_year: Optional[int] = Field(None, ge=2000, le=2100)
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    department_id: Optional[str] = None
    lines: Optional[List[PlanLineUpdate]] = None


class PlanImportRequest(BaseModel):
    """Spreadsheet import: either raw CSV text or already-parsed rows."""

    fiscal_year: int = Field(..., ge=2000, le=2100)
    title: str = Field(..., min_length=1, max_length=255)
    department_id: Optional[str] = None
    source_file_name: Optional[str] = None
    csv_content: Optional[str] = None
    rows: Optional[List[dict[str, Any]]] = None


class PlanLineResponse(BaseModel):
    id: str
    line_number: int
    name: str
    description: Optional[str] = None
    unit: str
    category: str
    planned_quantity: int
    planned_unit_cost_cents: int
    planned_total_cents: int
    remaining_quantity: int
    remaining_budget_cents: int
    schedule_quarter: Optional[str] = None
    procurement_method: Optional[str] = None
    version: int


class PlanResponse(BaseModel):
    id: str
    fiscal_year: int
    department_id: Optional[str] = None
    title: str
    source_file_name: Optional[str] = None
    total_budget_cents: int
    created_by: str
    lines: List[PlanLineResponse] = []
    created_at: str
