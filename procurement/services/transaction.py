"""
Unit-of-work helpers for multi-row mutations.

``atomic`` runs a block inside a SAVEPOINT on the caller's session. Whatever
the block flushed is rolled back if anything inside it raises, so a purchase
order never survives without its lines and a report never survives without
its order-line deltas. If the rollback itself fails the rows that were
already written are reported in a ``PartialFailure``.

Storage errors are translated at this boundary:
  StaleDataError            -> ConflictError (concurrent update, version mismatch)
  OperationalError / lost connection -> TransientInfrastructureError

``call_with_transient_retry`` is what the route layer wraps service calls in:
transient errors get one more attempt, everything else propagates untouched.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)
import structlog

from procurement.config import settings
from procurement.exceptions import (
    ConflictError,
    PartialFailure,
    TransientInfrastructureError,
    WorkflowError,
)

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)


@dataclass
class UnitOfWork:
    operation: str
    written: list[tuple[str, str]] = field(default_factory=list)

    def track(self, row) -> None:
        """Remember a flushed row so a failed compensation can name it."""
        self.written.append((row.__tablename__, str(row.id)))

    def surviving_rows(self) -> list[dict]:
        return [{"table": table, "id": row_id} for table, row_id in self.written]


def translate_storage_error(exc: Exception) -> Exception:
    if isinstance(exc, WorkflowError):
        return exc
    if isinstance(exc, StaleDataError):
        return ConflictError(
            "The document was modified concurrently; reload and retry",
            {"cause": str(exc)},
        )
    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return TransientInfrastructureError(
            "Storage temporarily unavailable", {"cause": str(exc.orig or exc)}
        )
    return exc


@asynccontextmanager
async def atomic(session: AsyncSession, operation: str):
    unit = UnitOfWork(operation)
    savepoint = await session.begin_nested()
    try:
        yield unit
        await session.flush()
    except Exception as exc:
        try:
            await savepoint.rollback()
        except Exception as rollback_exc:
            logger.error(
                "unit_of_work_compensation_failed",
                operation=operation,
                surviving_rows=unit.surviving_rows(),
                error=str(rollback_exc),
            )
            raise PartialFailure(operation, unit.surviving_rows(), str(exc)) from rollback_exc

        logger.warning(
            "unit_of_work_rolled_back",
            operation=operation,
            rows_discarded=len(unit.written),
            error_type=type(exc).__name__,
        )
        translated = translate_storage_error(exc)
        if translated is exc:
            raise
        raise translated from exc
    else:
        await savepoint.commit()


def check_version(entity, expected_version: Optional[int], entity_type: str) -> None:
    """Optimistic concurrency check against the version the caller last saw."""
    if expected_version is not None and entity.version != expected_version:
        raise ConflictError(
            f"{entity_type} was modified by someone else; reload and retry",
            {
                "entity_type": entity_type,
                "id": str(entity.id),
                "expected_version": expected_version,
                "current_version": entity.version,
            },
        )


@retry(
    retry=retry_if_exception_type(TransientInfrastructureError),
    stop=stop_after_attempt(settings.TRANSIENT_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def call_with_transient_retry(operation, *args, **kwargs):
    return await operation(*args, **kwargs)
