import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    Boolean,
    DateTime,
    Date,
    Text,
    ForeignKey,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base

INSPECTION_RESULTS = ("accepted", "rejected", "requires_reinspection")


class InspectionReport(Base):
    __tablename__ = "inspection_reports"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    iar_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    po_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id")
    )
    inspector_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    inspection_date: Mapped[date] = mapped_column(Date, nullable=False)
    overall_result: Mapped[str] = mapped_column(String(30), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    is_emergency_purchase: Mapped[bool] = mapped_column(Boolean, default=False)
    emergency_supplier_name: Mapped[Optional[str]] = mapped_column(String(255))
    emergency_amount_cents: Mapped[Optional[int]] = mapped_column(BigInteger)
    emergency_reference: Mapped[Optional[str]] = mapped_column(String(255))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "overall_result IN ('accepted','rejected','requires_reinspection')",
            name="chk_iar_result",
        ),
        CheckConstraint(
            "is_emergency_purchase OR po_id IS NOT NULL", name="chk_iar_po_link"
        ),
        Index("idx_iar_po", "po_id"),
        Index("idx_iar_result", "overall_result"),
    )


class InspectionItem(Base):
    __tablename__ = "inspection_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    report_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("inspection_reports.id", ondelete="CASCADE"), nullable=False
    )
    po_line_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("po_line_items.id"), nullable=False
    )
    inspected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    accepted_quantity: Mapped[int] = mapped_column(Integer, default=0)
    rejected_quantity: Mapped[int] = mapped_column(Integer, default=0)
    result: Mapped[str] = mapped_column(String(30), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint(
            "accepted_quantity + rejected_quantity = inspected_quantity",
            name="chk_iar_item_apportion",
        ),
        CheckConstraint(
            "accepted_quantity >= 0 AND rejected_quantity >= 0",
            name="chk_iar_item_nonneg",
        ),
        Index("idx_iar_items_report", "report_id"),
        Index("idx_iar_items_po_line", "po_line_item_id"),
    )
