"""
NumberingService: human-readable numbers (PAY-2025-0001, AV-2025-0001, SUR-2025-0001).

One NumberCounter row per (entity type, year), incremented by a single
UPDATE ... RETURNING statement so two concurrent requests never read the same value.
"""
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from staffpay.core.config import settings
from staffpay.core.errors import PersistenceError
from staffpay.models.counter import NumberCounter

logger = logging.getLogger(__name__)

PREFIXES = {
    "payroll": "PAY",
    "advance": "AV",
    "sursalaire": "SUR",
}


def format_number(entity_type: str, year: int, value: int) -> str:
    return f"{PREFIXES[entity_type]}-{year}-{value:04d}"


def fallback_number(entity_type: str, year: int) -> str:
    stamp = datetime.now(timezone.utc).strftime("%m%d%H%M%S%f")
    return f"{PREFIXES[entity_type]}-{year}-T{stamp}"


class NumberingService:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_value(self, entity_type: str, year: int) -> int:
        for _ in range(settings.NUMBERING_MAX_RETRIES + 1):
            result = await self.db.execute(
                update(NumberCounter)
                .where(NumberCounter.entity_type == entity_type, NumberCounter.year == year)
                .values(value=NumberCounter.value + 1)
                .returning(NumberCounter.value)
            )
            value = result.scalar_one_or_none()
            if value is not None:
                await self.db.commit()
                return value

            # First number of the year for this entity type
            self.db.add(NumberCounter(entity_type=entity_type, year=year, value=1))
            try:
                await self.db.commit()
                return 1
            except IntegrityError:
                # Another request created the row first; increment theirs
                await self.db.rollback()
                logger.debug("counter race for %s/%s, retrying", entity_type, year)

        raise PersistenceError(
            f"Could not allocate a {entity_type} number for {year}",
            context={"entity_type": entity_type, "year": year},
        )

    async def next_number(self, entity_type: str, year: int) -> str:
        return format_number(entity_type, year, await self.next_value(entity_type, year))

    async def is_taken(self, model, number: str) -> bool:
        result = await self.db.execute(select(model.id).where(model.number == number))
        return result.first() is not None

    async def persist_numbered(self, entity: Any, entity_type: str, year: int) -> Any:
        """
        Numbers and inserts ``entity``, committing it.

        A number collision (counter reset, manual import) is retried with a
        timestamp-derived number and never surfaced. Any other IntegrityError is
        re-raised for the caller to interpret.
        """
        model = type(entity)
        entity.number = await self.next_number(entity_type, year)
        for attempt in range(settings.NUMBERING_MAX_RETRIES + 1):
            self.db.add(entity)
            try:
                await self.db.commit()
                return entity
            except IntegrityError:
                await self.db.rollback()
                if not await self.is_taken(model, entity.number):
                    raise
                logger.warning(
                    "number %s already used, falling back (attempt %d)", entity.number, attempt + 1
                )
                entity.number = fallback_number(entity_type, year)

        raise PersistenceError(
            f"Could not persist {entity_type} with a unique number",
            context={"entity_type": entity_type, "year": year, "last_number": entity.number},
        )
