"""
SursalaireAggregator: advance recoveries withheld from paid payrolls in a window are
gathered into one supplemental credit for a beneficiary worker.

The deduction rows are snapshotted at creation. Later payroll edits do not change an
existing sursalaire.
"""
from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import partial

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staffpay.core.errors import (
    BusinessRuleError, ConflictError, NotFoundError, PeriodConflictError, StateConflictError,
)
from staffpay.core.money import ZERO, money
from staffpay.models.advance import Advance
from staffpay.models.payroll import Payroll
from staffpay.models.sursalaire import Sursalaire, SursalaireDeduction
from staffpay.models.worker import Worker
from staffpay.services.numbering import NumberingService
from staffpay.services.payroll_totals import apply_totals
from staffpay.services.period_guard import assert_valid_period
from staffpay.services.persistence import actor_id_of, commit, load
from staffpay.services.saga import Saga

logger = logging.getLogger(__name__)


@dataclass
class DeductionLine:
    advance_id: uuid.UUID
    advance_number: str | None
    payroll_id: uuid.UUID
    agent_id: uuid.UUID
    deduction_amount: Decimal
    deduction_date: date


@dataclass
class AgentDeductions:
    agent_id: uuid.UUID
    lines: list[DeductionLine] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((line.deduction_amount for line in self.lines), ZERO)


@dataclass
class DeductionSummary:
    period_start: date
    period_end: date
    agents: list[AgentDeductions] = field(default_factory=list)
    skipped: int = 0

    @property
    def lines(self) -> list[DeductionLine]:
        return [line for agent in self.agents for line in agent.lines]

    @property
    def total(self) -> Decimal:
        return sum((agent.total for agent in self.agents), ZERO)


class SursalaireAggregator:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.numbering = NumberingService(db)

    async def get(self, sursalaire_id: uuid.UUID) -> Sursalaire:
        return await load(self.db, Sursalaire, sursalaire_id, "Sursalaire")

    async def list(
        self,
        beneficiary_id: uuid.UUID | None = None,
        status: str | None = None,
        month: int | None = None,
        year: int | None = None,
    ) -> list[Sursalaire]:
        query = select(Sursalaire).order_by(Sursalaire.period_start.desc(), Sursalaire.created_at.desc())
        if beneficiary_id:
            query = query.where(Sursalaire.beneficiary_id == beneficiary_id)
        if status:
            query = query.where(Sursalaire.status == status)
        if month:
            query = query.where(Sursalaire.month == month)
        if year:
            query = query.where(Sursalaire.year == year)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def calculate_advance_deductions_for_period(
        self, period_start: date, period_end: date
    ) -> DeductionSummary:
        """Point-in-time read of recoveries taken by paid payrolls intersecting the window."""
        assert_valid_period(period_start, period_end)
        result = await self.db.execute(
            select(Payroll)
            .where(
                Payroll.paid.is_(True),
                Payroll.period_start <= period_end,
                Payroll.period_end >= period_start,
            )
            .order_by(Payroll.period_end, Payroll.id)
        )
        payrolls = [p for p in result.scalars().all() if p.advances_applied]

        advance_ids = {a.advance_id for p in payrolls for a in p.advances_applied if a.advance_id}
        advances: dict[uuid.UUID, Advance] = {}
        if advance_ids:
            adv_result = await self.db.execute(select(Advance).where(Advance.id.in_(advance_ids)))
            advances = {a.id: a for a in adv_result.scalars().all()}

        summary = DeductionSummary(period_start, period_end)
        by_agent: dict[uuid.UUID, dict[tuple, DeductionLine]] = defaultdict(dict)
        for payroll in payrolls:
            for application in payroll.advances_applied:
                advance = advances.get(application.advance_id)
                if advance is None:
                    logger.warning(
                        "payroll %s references unknown advance %s (%s), skipped",
                        payroll.number, application.advance_id, application.amount,
                    )
                    summary.skipped += 1
                    continue
                key = (advance.id, payroll.id)
                line = by_agent[advance.worker_id].get(key)
                if line is None:
                    by_agent[advance.worker_id][key] = DeductionLine(
                        advance_id=advance.id,
                        advance_number=advance.number,
                        payroll_id=payroll.id,
                        agent_id=advance.worker_id,
                        deduction_amount=money(application.amount),
                        deduction_date=payroll.paid_at.date() if payroll.paid_at else payroll.period_end,
                    )
                else:
                    line.deduction_amount += money(application.amount)

        summary.agents = [
            AgentDeductions(agent_id=agent_id, lines=list(lines.values()))
            for agent_id, lines in by_agent.items()
        ]
        return summary

    async def create_sursalaire(
        self,
        beneficiary_id: uuid.UUID,
        period_start: date,
        period_end: date,
        actor=None,
        notes: str | None = None,
    ) -> Sursalaire:
        actor_id = actor_id_of(actor)
        assert_valid_period(period_start, period_end)
        if await self.db.get(Worker, beneficiary_id) is None:
            raise NotFoundError("Worker", beneficiary_id)

        result = await self.db.execute(
            select(Sursalaire)
            .where(
                Sursalaire.beneficiary_id == beneficiary_id,
                Sursalaire.status != "cancelled",
                Sursalaire.period_start <= period_end,
                Sursalaire.period_end >= period_start,
            )
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            raise PeriodConflictError(
                f"Sursalaire {existing.number} already covers part of {period_start} to {period_end}",
                conflicting=existing,
            )

        summary = await self.calculate_advance_deductions_for_period(period_start, period_end)
        total = summary.total
        if total <= ZERO:
            raise BusinessRuleError(
                f"No advance recoveries were withheld between {period_start} and {period_end}"
            )

        sursalaire = Sursalaire(
            id=uuid.uuid4(),
            beneficiary_id=beneficiary_id,
            period_start=period_start,
            period_end=period_end,
            month=period_end.month,
            year=period_end.year,
            total_advance_deductions=total,
            credited_amount=total,
            status="pending",
            notes=notes,
            created_by=actor_id,
            advance_deductions=[
                SursalaireDeduction(
                    advance_id=line.advance_id,
                    advance_number=line.advance_number,
                    payroll_id=line.payroll_id,
                    agent_id=line.agent_id,
                    deduction_amount=line.deduction_amount,
                    deduction_date=line.deduction_date,
                )
                for line in summary.lines
            ],
        )
        await self.numbering.persist_numbered(sursalaire, "sursalaire", period_end.year)
        sursalaire_id = sursalaire.id
        logger.info("sursalaire %s created for %s: %s from %d deduction(s)",
                    sursalaire.number, beneficiary_id, total, len(summary.lines))

        try:
            return await self.credit_sursalaire(sursalaire_id, actor=actor_id)
        except (BusinessRuleError, ConflictError) as exc:
            logger.info("sursalaire %s left pending: %s", sursalaire_id, exc.message)
        return await self.get(sursalaire_id)

    async def _find_target(self, sursalaire: Sursalaire) -> Payroll:
        result = await self.db.execute(
            select(Payroll)
            .where(
                Payroll.worker_id == sursalaire.beneficiary_id,
                Payroll.period_start <= sursalaire.period_end,
                Payroll.period_end >= sursalaire.period_start,
            )
            .order_by(Payroll.paid, Payroll.period_end.desc())
        )
        candidates = list(result.scalars().all())
        if not candidates:
            raise BusinessRuleError(
                f"No payroll of the beneficiary covers {sursalaire.period_start} to {sursalaire.period_end}"
            )
        # Unpaid payrolls sort first
        return candidates[0]

    async def credit_sursalaire(
        self,
        sursalaire_id: uuid.UUID,
        actor=None,
        target_payroll_id: uuid.UUID | None = None,
    ) -> Sursalaire:
        actor_id = actor_id_of(actor)
        sursalaire = await self.get(sursalaire_id)
        if sursalaire.status != "pending":
            raise StateConflictError(
                f"Sursalaire {sursalaire.number} is {sursalaire.status} and cannot be credited",
                status=sursalaire.status,
            )

        if target_payroll_id is not None:
            target = await load(self.db, Payroll, target_payroll_id, "Payroll")
            if target.worker_id != sursalaire.beneficiary_id:
                raise BusinessRuleError(
                    f"Payroll {target.number} does not belong to the sursalaire beneficiary"
                )
        else:
            target = await self._find_target(sursalaire)
        if target.paid:
            raise StateConflictError(f"Target payroll {target.number} is already paid")

        amount = min(money(sursalaire.credited_amount), money(sursalaire.total_advance_deductions))
        target_id = target.id
        previous = money(target.sursalaire)
        number = sursalaire.number

        saga = Saga(self.db, "credit_sursalaire", context={
            "sursalaire_id": str(sursalaire_id),
            "payroll_id": str(target_id),
            "amount": str(amount),
            "previous_sursalaire": str(previous),
        })
        saga.step(
            "credit_payroll",
            partial(self._add_payroll_sursalaire, target_id, amount),
            partial(self._add_payroll_sursalaire, target_id, -amount, False),
        )
        saga.step("mark_credited", partial(self._mark_credited, sursalaire_id, target_id, actor_id))
        await saga.run()

        logger.info("sursalaire %s credited %s to payroll %s", number, amount, target_id)
        return await self.get(sursalaire_id)

    async def _add_payroll_sursalaire(
        self, payroll_id: uuid.UUID, delta: Decimal, require_unpaid: bool = True
    ) -> None:
        # Several sursalaires may land on one payroll, each adds its own amount
        payroll = await load(self.db, Payroll, payroll_id, "Payroll")
        if require_unpaid and payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} was paid in the meantime")
        payroll.sursalaire = max(ZERO, money(payroll.sursalaire) + delta)
        apply_totals(payroll)
        await commit(self.db, "Payroll", payroll_id)

    async def _mark_credited(self, sursalaire_id: uuid.UUID, payroll_id: uuid.UUID, actor_id) -> None:
        sursalaire = await self.get(sursalaire_id)
        if sursalaire.status != "pending":
            raise StateConflictError(f"Sursalaire {sursalaire.number} was {sursalaire.status} concurrently")
        sursalaire.status = "credited"
        sursalaire.credited_at = datetime.now(timezone.utc)
        sursalaire.credited_by = actor_id
        sursalaire.beneficiary_payroll_id = payroll_id
        await commit(self.db, "Sursalaire", sursalaire_id)

    async def cancel_sursalaire(self, sursalaire_id: uuid.UUID, actor=None, reason: str | None = None) -> Sursalaire:
        sursalaire = await self.get(sursalaire_id)
        if sursalaire.status != "pending":
            raise StateConflictError(
                f"Sursalaire {sursalaire.number} is {sursalaire.status}, only pending ones can be cancelled",
                status=sursalaire.status,
            )
        sursalaire.status = "cancelled"
        sursalaire.cancelled_at = datetime.now(timezone.utc)
        sursalaire.cancelled_by = actor_id_of(actor)
        sursalaire.cancellation_reason = reason
        await commit(self.db, "Sursalaire", sursalaire_id)
        logger.info("sursalaire %s cancelled", sursalaire.number)
        return sursalaire

    async def credit_pending(self) -> dict[str, int]:
        """Retries crediting every pending sursalaire. Used by the periodic task."""
        pending = [s.id for s in await self.list(status="pending")]
        credited = 0
        for sursalaire_id in pending:
            try:
                await self.credit_sursalaire(sursalaire_id)
                credited += 1
            except (BusinessRuleError, ConflictError) as exc:
                logger.info("sursalaire %s still pending: %s", sursalaire_id, exc.message)
        return {"pending": len(pending), "credited": credited}
