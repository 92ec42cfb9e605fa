import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staffpay.core.database import Base

ADVANCE_STATUSES = ("draft", "requested", "approved", "rejected", "paid", "closed", "cancelled")
ADVANCE_REASONS = ("medical", "family", "education", "housing", "emergency", "other")


class Advance(Base):
    __tablename__ = "advances"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    worker_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("workers.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    remaining: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    total_repaid: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)

    # Recovery policy
    monthly_recovery: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))
    recovery_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    max_recovery_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"))

    status: Mapped[str] = mapped_column(String(50), default="requested", index=True)
    reason: Mapped[str] = mapped_column(String(50), default="other")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    payment_method: Mapped[str] = mapped_column(String(50), default="bank_transfer")
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Disbursement to the worker; recovery continues afterwards
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    created_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    repayments: Mapped[list["AdvanceRepayment"]] = relationship(
        back_populates="advance",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AdvanceRepayment.repayment_date",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def number_of_repayments(self) -> int:
        return len(self.repayments)


class AdvanceRepayment(Base):
    __tablename__ = "advance_repayments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    advance_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("advances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    repayment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    # No hard FK: the repayment must survive long enough to be released when its payroll goes
    payroll_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    payment_method: Mapped[str] = mapped_column(String(50), default="payroll_deduction")
    recorded_by: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    advance: Mapped["Advance"] = relationship(back_populates="repayments")
