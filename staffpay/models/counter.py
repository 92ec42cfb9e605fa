from sqlalchemy import Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from staffpay.core.database import Base


class NumberCounter(Base):
    """Per (entity type, year) counter behind human-readable numbers like AV-2025-0001."""

    __tablename__ = "number_counters"
    __table_args__ = (
        UniqueConstraint("entity_type", "year", name="uq_number_counter_entity_year"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
