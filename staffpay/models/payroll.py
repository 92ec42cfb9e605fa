import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staffpay.core.database import Base

PAYMENT_METHODS = ("cash", "bank_transfer", "mobile_money", "check")

GAIN_FIELDS = (
    "base_salary",
    "transport",
    "risk",
    "total_indemnities",
    "overtime_hours",
    "sursalaire",
)
DEDUCTION_FIELDS = (
    "accompte",
    "autres_retenues",
    "absences",
)


def _money_column():
    return mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)


class Payroll(Base):
    __tablename__ = "payrolls"
    __table_args__ = (
        UniqueConstraint("worker_id", "period_start", name="uq_payroll_worker_period_start"),
        Index("ix_payrolls_worker_period", "worker_id", "period_start", "period_end"),
        Index("ix_payrolls_paid_period_end", "paid", "period_end"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    worker_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("workers.id"), nullable=False)
    work_contract_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("work_contracts.id"), nullable=True
    )

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    # Gains
    base_salary: Mapped[Decimal] = _money_column()
    transport: Mapped[Decimal] = _money_column()
    risk: Mapped[Decimal] = _money_column()
    total_indemnities: Mapped[Decimal] = _money_column()
    overtime_hours: Mapped[Decimal] = _money_column()  # amount paid for overtime
    sursalaire: Mapped[Decimal] = _money_column()
    gross_salary: Mapped[Decimal] = _money_column()

    # Deductions (retenues)
    accompte: Mapped[Decimal] = _money_column()
    autres_retenues: Mapped[Decimal] = _money_column()  # manual part + advance recovery
    absences: Mapped[Decimal] = _money_column()
    total_retenues: Mapped[Decimal] = _money_column()

    # Employer charges
    cnps_employer: Mapped[Decimal] = _money_column()

    net_amount: Mapped[Decimal] = _money_column()

    # Payment
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(50), default="bank_transfer")
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    advances_applied: Mapped[list["PayrollAdvanceApplication"]] = relationship(
        back_populates="payroll",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PayrollAdvanceApplication.position",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def recovered_total(self) -> Decimal:
        return sum((a.amount for a in self.advances_applied), Decimal("0"))

    @property
    def manual_autres_retenues(self) -> Decimal:
        """Part of autres_retenues that was entered by hand, not recovered from advances."""
        return max(Decimal("0"), (self.autres_retenues or Decimal("0")) - self.recovered_total)


class PayrollAdvanceApplication(Base):
    """One advance recovered by a payroll (``advancesApplied`` entry)."""

    __tablename__ = "payroll_advance_applications"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    payroll_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("payrolls.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # No hard FK: an advance may be purged while the payroll keeps its history
    advance_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)

    payroll: Mapped["Payroll"] = relationship(back_populates="advances_applied")
