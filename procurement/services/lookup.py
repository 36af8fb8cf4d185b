import uuid
from typing import Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from procurement.exceptions import NotFound, ValidationError

T = TypeVar("T")


def as_uuid(value, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise ValidationError(f"{field_name} must be a valid UUID", {"field": field_name})


def as_optional_uuid(value, field_name: str) -> Optional[uuid.UUID]:
    if value in (None, ""):
        return None
    return as_uuid(value, field_name)


async def get_or_raise(
    session: AsyncSession,
    model: Type[T],
    entity_id,
    entity_type: Optional[str] = None,
    for_update: bool = False,
) -> T:
    entity_type = entity_type or model.__name__
    q = select(model).where(model.id == as_uuid(entity_id, f"{entity_type} id"))
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    entity = result.scalar_one_or_none()
    if entity is None:
        raise NotFound(entity_type, entity_id)
    return entity


async def fetch_page(session: AsyncSession, q, page: int, limit: int) -> tuple[list, int]:
    """One page of ``q`` and the row count of the unpaged query."""
    count_q = select(func.count()).select_from(q.order_by(None).subquery())
    total = (await session.execute(count_q)).scalar() or 0
    result = await session.execute(q.offset((page - 1) * limit).limit(limit))
    return list(result.scalars().all()), total
