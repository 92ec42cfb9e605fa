import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staffpay.core.database import Base

CONTRACT_TYPES = ("cdi", "cdd", "stage", "interim", "temporaire")
CONTRACT_STATUSES = (
    "draft", "pending_signature", "active", "suspended", "terminated", "expired", "cancelled",
)


class WorkContract(Base):
    __tablename__ = "work_contracts"
    __table_args__ = (
        Index("ix_work_contracts_worker_status", "worker_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    contract_number: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    worker_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("workers.id", ondelete="CASCADE"), nullable=False
    )

    contract_type: Mapped[str] = mapped_column(String(50), nullable=False)  # cdi | cdd | ...
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)  # NULL = open ended (CDI)
    position: Mapped[str] = mapped_column(String(255), nullable=False)

    # Remuneration
    base_salary: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    indemnities: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    status: Mapped[str] = mapped_column(String(50), default="draft")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    worker: Mapped["Worker"] = relationship(back_populates="contracts")
