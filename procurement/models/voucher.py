import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Date,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base

VOUCHER_STATUSES = ("for_signature", "submitted", "processed")
PAYMENT_METHODS = ("check", "bank_transfer", "cash")


class DisbursementVoucher(Base):
    __tablename__ = "disbursement_vouchers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dv_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    inspection_report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("inspection_reports.id"), nullable=False
    )
    po_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id")
    )
    payee_name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), default="check")
    check_number: Mapped[Optional[str]] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default="for_signature")
    payment_date: Mapped[Optional[date]] = mapped_column(Date)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("inspection_report_id", name="uq_dv_inspection_report"),
        CheckConstraint("amount_cents > 0", name="chk_dv_amount"),
        CheckConstraint(
            "status IN ('for_signature','submitted','processed')", name="chk_dv_status"
        ),
        CheckConstraint(
            "payment_method IN ('check','bank_transfer','cash')",
            name="chk_dv_payment_method",
        ),
        CheckConstraint(
            "status != 'processed' OR payment_date IS NOT NULL",
            name="chk_dv_processed_date",
        ),
        Index("idx_dv_status", "status"),
    )
