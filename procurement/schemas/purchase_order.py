from datetime import date
from typing import List, Optional
from pydantic import BaseModel, Field


class PurchaseOrderCreate(BaseModel):
    pr_id: str
    line_item_ids: List[str] = Field(default_factory=list)
    supplier_name: Optional[str] = None
    supplier_address: Optional[str] = None
    supplier_contact: Optional[str] = None
    terms_conditions: Optional[str] = None
    delivery_date: Optional[date] = None


class PoLineItemResponse(BaseModel):
    id: str
    pr_line_item_id: str
    line_number: int
    quantity: int
    unit_cost_cents: int
    total_cost_cents: int
    delivered_quantity: int = 0
    remaining_quantity: int
    cancelled: bool = False
    version: int


class PurchaseOrderResponse(BaseModel):
    id: str
    po_number: str
    pr_id: str
    supplier_name: str
    supplier_address: Optional[str] = None
    supplier_contact: Optional[str] = None
    terms_conditions: Optional[str] = None
    delivery_date: Optional[str] = None
    status: str
    delivery_status: str
    total_cents: int
    created_by: str
    version: int
    line_items: List[PoLineItemResponse] = []
    created_at: str
    updated_at: str


class OrderStatusChangeRequest(BaseModel):
    expected_version: Optional[int] = None


class OrderCancelRequest(OrderStatusChangeRequest):
    reason: Optional[str] = Field(None, max_length=1000)
