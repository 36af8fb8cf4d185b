"""Audit logging service: records document state changes."""

from typing import Optional
from datetime import datetime, date
import uuid

from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.audit_log import AuditLog

logger = structlog.get_logger()


def snapshot(entity, fields: tuple[str, ...]) -> dict:
    """JSON-safe dict of the given attributes, for before/after states."""
    state = {}
    for name in fields:
        value = getattr(entity, name, None)
        if isinstance(value, (uuid.UUID, datetime, date)):
            value = value.isoformat() if not isinstance(value, uuid.UUID) else str(value)
        state[name] = value
    return state


def _compute_changed_fields(
    before: Optional[dict], after: Optional[dict]
) -> Optional[list[str]]:
    """Diff two state dicts and return list of changed field names."""
    if not before or not after:
        return None
    changed = []
    all_keys = set(before.keys()) | set(after.keys())
    for key in sorted(all_keys):
        if before.get(key) != after.get(key):
            changed.append(key)
    return changed or None


async def create_audit_log(
    session: AsyncSession,
    actor_id: Optional[uuid.UUID],
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Uses session.flush(); the caller owns the transaction.
    """
    changed_fields = _compute_changed_fields(before_state, after_state)
    request_id = structlog.contextvars.get_contextvars().get("request_id")

    audit = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        before_state=before_state,
        after_state=after_state,
        changed_fields=changed_fields,
        request_id=request_id,
        created_at=datetime.utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=str(actor_id) if actor_id else None,
    )
    return audit
