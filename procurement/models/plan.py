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


class Plan(Base):
    """Annual procurement plan (PPMP) header."""

    __tablename__ = "plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    source_file_name: Mapped[Optional[str]] = mapped_column(String(255))
    total_budget_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("total_budget_cents >= 0", name="chk_plan_budget"),
        Index("idx_plans_fiscal_year", "fiscal_year"),
    )


class PlanLine(Base):
    __tablename__ = "plan_lines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plans.id", ondelete="RESTRICT"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    unit: Mapped[str] = mapped_column(String(50), default="pcs")
    category: Mapped[str] = mapped_column(String(50), default="MOOE")
    planned_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    planned_unit_cost_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    planned_total_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    remaining_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_budget_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    schedule_quarter: Mapped[Optional[str]] = mapped_column(String(20))
    procurement_method: Mapped[Optional[str]] = mapped_column(String(100))
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("plan_id", "line_number", name="uq_plan_line"),
        CheckConstraint("planned_quantity >= 0", name="chk_plan_line_qty"),
        CheckConstraint(
            "remaining_quantity >= 0 AND remaining_quantity <= planned_quantity",
            name="chk_plan_line_remaining_qty",
        ),
        CheckConstraint(
            "remaining_budget_cents >= 0 AND remaining_budget_cents <= planned_total_cents",
            name="chk_plan_line_remaining_budget",
        ),
        Index("idx_plan_lines_plan", "plan_id"),
    )
