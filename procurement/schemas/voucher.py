from datetime import date
from typing import Literal, Optional
from pydantic import BaseModel, Field

PaymentMethod = Literal["check", "bank_transfer", "cash"]
VoucherStatus = Literal["for_signature", "submitted", "processed"]


class VoucherCreate(BaseModel):
    inspection_report_id: str
    payee_name: Optional[str] = Field(None, min_length=1, max_length=255)
    amount_cents: Optional[int] = Field(None, ge=1)
    payment_method: PaymentMethod = "check"
    check_number: Optional[str] = Field(None, max_length=50)


class VoucherUpdate(BaseModel):
    expected_version: Optional[int] = None
    payee_name: Optional[str] = Field(None, min_length=1, max_length=255)
    amount_cents: Optional[int] = Field(None, ge=1)
    payment_method: Optional[PaymentMethod] = None
    check_number: Optional[str] = Field(None, max_length=50)


class VoucherStatusChange(BaseModel):
    status: VoucherStatus
    expected_version: Optional[int] = None
    payment_date: Optional[date] = None
    check_number: Optional[str] = Field(None, max_length=50)


class MarkPaidRequest(BaseModel):
    payment_date: date
    check_number: Optional[str] = Field(None, max_length=50)
    expected_version: Optional[int] = None


class VoucherResponse(BaseModel):
    id: str
    dv_number: str
    inspection_report_id: str
    po_id: Optional[str] = None
    payee_name: str
    amount_cents: int
    payment_method: str
    check_number: Optional[str] = None
    status: str
    payment_date: Optional[str] = None
    processed_at: Optional[str] = None
    processed_by: Optional[str] = None
    created_by: str
    version: int
    created_at: str
    updated_at: str


class AvailableReportResponse(BaseModel):
    id: str
    iar_number: str
    po_id: Optional[str] = None
    inspection_date: str
    suggested_payee: Optional[str] = None
    suggested_amount_cents: Optional[int] = None
