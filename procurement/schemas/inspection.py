from datetime import date
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

EditedField = Literal["accepted", "rejected"]


class InspectionItemCreate(BaseModel):
    """One inspected order line.

    ``inspected_quantity`` defaults to what remains on the order line.
    When accepted and rejected do not add up to the inspected quantity,
    ``last_edited`` names the figure the inspector typed last; the other one
    is recomputed.
    """

    po_line_item_id: str
    inspected_quantity: Optional[int] = Field(None, ge=1)
    accepted_quantity: Optional[int] = Field(None, ge=0)
    rejected_quantity: Optional[int] = Field(None, ge=0)
    last_edited: Optional[EditedField] = None
    remarks: Optional[str] = None


class InspectionReportCreate(BaseModel):
    po_id: Optional[str] = None
    inspection_date: Optional[date] = None
    remarks: Optional[str] = None
    items: List[InspectionItemCreate] = Field(default_factory=list)
    is_emergency_purchase: bool = False
    emergency_supplier_name: Optional[str] = None
    emergency_amount_cents: Optional[int] = Field(None, ge=1)
    emergency_reference: Optional[str] = None


class InspectionItemUpdate(BaseModel):
    id: str
    inspected_quantity: Optional[int] = Field(None, ge=1)
    accepted_quantity: Optional[int] = Field(None, ge=0)
    rejected_quantity: Optional[int] = Field(None, ge=0)
    last_edited: Optional[EditedField] = None
    remarks: Optional[str] = None


class InspectionReportUpdate(BaseModel):
    expected_version: int
    inspection_date: Optional[date] = None
    remarks: Optional[str] = None
    items: List[InspectionItemUpdate] = Field(default_factory=list)
    emergency_supplier_name: Optional[str] = None
    emergency_amount_cents: Optional[int] = Field(None, ge=1)
    emergency_reference: Optional[str] = None


class InspectionItemResponse(BaseModel):
    id: str
    po_line_item_id: str
    inspected_quantity: int
    accepted_quantity: int
    rejected_quantity: int
    result: str
    remarks: Optional[str] = None


class InspectionReportResponse(BaseModel):
    id: str
    iar_number: str
    po_id: Optional[str] = None
    inspector_id: str
    inspection_date: str
    overall_result: str
    remarks: Optional[str] = None
    is_emergency_purchase: bool = False
    emergency_supplier_name: Optional[str] = None
    emergency_amount_cents: Optional[int] = None
    emergency_reference: Optional[str] = None
    version: int
    items: List[InspectionItemResponse] = []
    created_at: str
    updated_at: str
