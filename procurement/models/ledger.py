import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, BigInteger, Integer, DateTime, CheckConstraint, Index, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from procurement.database import Base


class LedgerEntry(Base):
    """Append-only record of every change to a remainder field.

    ``quantity_delta`` / ``budget_delta_cents`` are signed from the subject's
    point of view: CONSUME and DELIVER take quantity away from what remains,
    RELEASE gives it back. Summing a source's entries yields what that source
    currently holds, which is what release and re-inspection diff against.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    subject_type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)
    source_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, default=0)
    budget_delta_cents: Mapped[int] = mapped_column(BigInteger, default=0)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "subject_type IN ('PLAN_LINE','ORDER_LINE')", name="chk_ledger_subject"
        ),
        CheckConstraint(
            "entry_type IN ('CONSUME','RELEASE','DELIVER','CANCEL')",
            name="chk_ledger_entry_type",
        ),
        Index("idx_ledger_subject", "subject_type", "subject_id"),
        Index("idx_ledger_source", "source_type", "source_id"),
    )
