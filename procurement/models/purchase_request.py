import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Integer,
    DateTime,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base

PR_STATUSES = ("pending", "for_approval", "approved", "awarded", "returned")


class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pr_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    plan_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, ForeignKey("plans.id"))
    requested_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="pending")
    total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    return_reason: Mapped[Optional[str]] = mapped_column(Text)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending','for_approval','approved','awarded','returned')",
            name="chk_pr_status",
        ),
        Index("idx_pr_status", "status"),
    )


class PrLineItem(Base):
    __tablename__ = "pr_line_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pr_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("purchase_requests.id", ondelete="CASCADE"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    plan_line_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("plan_lines.id", ondelete="RESTRICT")
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[str] = mapped_column(String(50), default="pcs")
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(50))
    released_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("pr_id", "line_number", name="uq_pr_line_item"),
        CheckConstraint("quantity > 0", name="chk_pr_line_qty"),
        CheckConstraint("unit_cost_cents >= 0", name="chk_pr_line_cost"),
        Index("idx_pr_items_pr", "pr_id"),
        Index("idx_pr_items_plan_line", "plan_line_id"),
    )
