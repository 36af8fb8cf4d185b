from typing import List, Optional
from pydantic import BaseModel, Field


class PrLineItemCreate(BaseModel):
    """A request line; identity and cost default from the plan line when linked."""

    plan_line_id: Optional[str] = None
    name: Optional[str] = Field(None, max_length=1000)
    description: Optional[str] = None
    unit: Optional[str] = None
    category: Optional[str] = None
    quantity: int = Field(..., ge=1, le=999999)
    unit_cost_cents: Optional[int] = Field(None, ge=0)
    total_cost_cents: Optional[int] = Field(None, ge=0)


class PurchaseRequestCreate(BaseModel):
    purpose: str = Field(..., min_length=1, max_length=2000)
    department_id: Optional[str] = None
    plan_id: Optional[str] = None
    line_items: List[PrLineItemCreate] = Field(..., min_length=1, max_length=200)


class PrLineItemResponse(BaseModel):
    id: str
    line_number: int
    plan_line_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    unit: str
    quantity: int
    unit_cost_cents: int
    total_cost_cents: int
    category: Optional[str] = None
    released_at: Optional[str] = None


class PurchaseRequestResponse(BaseModel):
    id: str
    pr_number: str
    purpose: str
    department_id: Optional[str] = None
    plan_id: Optional[str] = None
    requested_by: str
    status: str
    total_cents: int
    approved_by: Optional[str] = None
    approved_at: Optional[str] = None
    return_reason: Optional[str] = None
    version: int
    line_items: List[PrLineItemResponse] = []
    created_at: str
    updated_at: str


class StatusChangeRequest(BaseModel):
    expected_version: Optional[int] = None


class ReturnRequest(BaseModel):
    reason: str = Field(..., min_length=3, max_length=1000)
    expected_version: Optional[int] = None
