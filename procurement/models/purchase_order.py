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
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    po_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    pr_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id"), nullable=False
    )
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    supplier_address: Mapped[Optional[str]] = mapped_column(Text)
    supplier_contact: Mapped[Optional[str]] = mapped_column(String(255))
    terms_conditions: Mapped[Optional[str]] = mapped_column(Text)
    delivery_date: Mapped[Optional[date]] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','approved','cancelled')", name="chk_po_status"
        ),
        Index("idx_po_pr", "pr_id"),
        Index("idx_po_status", "status"),
    )


class PoLineItem(Base):
    __tablename__ = "po_line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    po_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False
    )
    pr_line_item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pr_line_items.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    delivered_quantity: Mapped[int] = mapped_column(Integer, default=0)
    remaining_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("po_id", "line_number", name="uq_po_line_item"),
        CheckConstraint("quantity > 0", name="chk_po_line_qty"),
        CheckConstraint(
            "delivered_quantity >= 0 AND remaining_quantity >= 0 "
            "AND delivered_quantity + remaining_quantity <= quantity",
            name="chk_po_line_delivery",
        ),
        Index("idx_po_items_po", "po_id"),
    )
