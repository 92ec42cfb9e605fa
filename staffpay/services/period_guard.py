"""
PeriodGuard: a worker never has two payrolls covering the same day, and advances are
not recorded against a month that has already been paid out.

Periods are inclusive date ranges. Two ranges overlap when
``start <= other_end and end >= other_start``.
"""
import calendar
import uuid
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staffpay.core.errors import BusinessRuleError, PeriodConflictError, ValidationError
from staffpay.models.payroll import Payroll


def periods_overlap(start: date, end: date, other_start: date, other_end: date) -> bool:
    return start <= other_end and end >= other_start


def month_bounds(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def assert_valid_period(period_start: date, period_end: date) -> None:
    if period_start > period_end:
        raise ValidationError(
            f"Period start {period_start} is after period end {period_end}",
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
        )


class PeriodGuard:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_conflicting(
        self,
        worker_id: uuid.UUID,
        period_start: date,
        period_end: date,
        exclude_payroll_id: uuid.UUID | None = None,
    ) -> list[Payroll]:
        query = (
            select(Payroll)
            .where(
                Payroll.worker_id == worker_id,
                Payroll.period_start <= period_end,
                Payroll.period_end >= period_start,
            )
            .order_by(Payroll.created_at, Payroll.id)
        )
        if exclude_payroll_id is not None:
            query = query.where(Payroll.id != exclude_payroll_id)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def assert_no_overlap(
        self,
        worker_id: uuid.UUID,
        period_start: date,
        period_end: date,
        exclude_payroll_id: uuid.UUID | None = None,
    ) -> None:
        assert_valid_period(period_start, period_end)
        conflicts = await self.find_conflicting(worker_id, period_start, period_end, exclude_payroll_id)
        if conflicts:
            other = conflicts[0]
            raise PeriodConflictError(
                f"Period {period_start} to {period_end} overlaps payroll {other.number} "
                f"({other.period_start} to {other.period_end})",
                conflicting=other,
            )

    async def assert_no_settled_month(self, worker_id: uuid.UUID, reference_date: date) -> None:
        """Raises when a paid payroll of the worker intersects the month of ``reference_date``."""
        first, last = month_bounds(reference_date)
        result = await self.db.execute(
            select(Payroll)
            .where(
                Payroll.worker_id == worker_id,
                Payroll.paid.is_(True),
                Payroll.period_start <= last,
                Payroll.period_end >= first,
            )
            .limit(1)
        )
        settled = result.scalar_one_or_none()
        if settled is not None:
            raise BusinessRuleError(
                f"Month {first:%Y-%m} is already settled by paid payroll {settled.number}",
                payroll_id=str(settled.id),
                payroll_number=settled.number,
            )
