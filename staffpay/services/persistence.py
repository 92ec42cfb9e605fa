"""Per-record write helpers shared by the services."""
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from staffpay.core.errors import ConcurrencyConflictError, NotFoundError

T = TypeVar("T")


async def commit(db: AsyncSession, entity_type: str, entity_id: Any) -> None:
    """Commits one record; a version mismatch becomes ConcurrencyConflictError."""
    try:
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConcurrencyConflictError(entity_type, entity_id) from exc


async def load(db: AsyncSession, model: type[T], entity_id: Any, entity_type: str | None = None) -> T:
    """Reads the current row, discarding anything cached in the session."""
    result = await db.execute(
        select(model)
        .where(model.id == entity_id)
        .execution_options(populate_existing=True)
    )
    obj = result.scalar_one_or_none()
    if obj is None:
        raise NotFoundError(entity_type or model.__name__, entity_id)
    return obj


async def load_or_none(db: AsyncSession, model: type[T], entity_id: Any) -> T | None:
    result = await db.execute(
        select(model)
        .where(model.id == entity_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def actor_id_of(actor: Any) -> Any:
    """Accepts a user object or a bare id; services only ever store the id."""
    if actor is None:
        return None
    return getattr(actor, "id", actor)
