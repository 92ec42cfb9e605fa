import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staffpay.core.database import Base

SURSALAIRE_STATUSES = ("pending", "credited", "cancelled")


class Sursalaire(Base):
    """Aggregate of advance recoveries in a period, credited to one beneficiary worker."""

    __tablename__ = "sursalaires"
    __table_args__ = (
        Index("ix_sursalaires_beneficiary_period", "beneficiary_id", "period_start", "period_end"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    beneficiary_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("workers.id"), nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    total_advance_deductions: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    credited_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    status: Mapped[str] = mapped_column(String(50), default="pending", index=True)
    credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    credited_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    beneficiary_payroll_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("payrolls.id", ondelete="SET NULL"), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    advance_deductions: Mapped[list["SursalaireDeduction"]] = relationship(
        back_populates="sursalaire",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}


class SursalaireDeduction(Base):
    """Snapshot of one recovery taken at creation time. Never updated afterwards."""

    __tablename__ = "sursalaire_deductions"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    sursalaire_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("sursalaires.id", ondelete="CASCADE"), nullable=False, index=True
    )
    advance_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    advance_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payroll_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    agent_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    deduction_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    deduction_date: Mapped[date] = mapped_column(Date, nullable=False)

    sursalaire: Mapped["Sursalaire"] = relationship(back_populates="advance_deductions")
