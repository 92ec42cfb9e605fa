"""
PayrollGenerator: builds, updates, deletes and pays payroll records.

Every compound write runs as a Saga. The payroll is committed first, then each
consumed advance is repaid; a failure anywhere removes what this call already wrote.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from functools import partial
from typing import Any, Callable

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from staffpay.core.config import settings
from staffpay.core.errors import (
    BusinessRuleError, NotFoundError, PeriodConflictError, StateConflictError,
)
from staffpay.core.money import ZERO, money
from staffpay.models.payroll import DEDUCTION_FIELDS, GAIN_FIELDS, Payroll, PayrollAdvanceApplication
from staffpay.models.sursalaire import Sursalaire
from staffpay.models.work_contract import WorkContract
from staffpay.models.worker import Worker
from staffpay.services.advance_ledger import AdvanceLedger, RecoveryEntry, can_recover, plan_recovery
from staffpay.services.numbering import NumberingService
from staffpay.services.payroll_totals import apply_totals
from staffpay.services.period_guard import PeriodGuard
from staffpay.services.persistence import actor_id_of, commit, load, load_or_none
from staffpay.services.saga import Saga

logger = logging.getLogger(__name__)

# Plain amounts a caller may set directly; autres_retenues is the manual component only
AMOUNT_OVERRIDES = (
    "transport", "risk", "overtime_hours", "sursalaire",
    "accompte", "autres_retenues", "absences", "cnps_employer",
)
EDITABLE_FIELDS = (
    "period_start", "period_end", "base_salary", "total_indemnities", *AMOUNT_OVERRIDES,
    "payment_method", "payment_reference", "notes",
)
SNAPSHOT_FIELDS = EDITABLE_FIELDS + ("month", "year", "gross_salary", "total_retenues", "net_amount")


# ── Salary resolvers ──────────────────────────────────────────────────────────
# Each resolver returns an amount or None ("absent"). The first present value wins,
# so an explicit override of 0 is kept instead of falling through.

@dataclass
class SalaryContext:
    overrides: dict[str, Any]
    contract: Any
    base_salary: Decimal = ZERO


def base_salary_from_override(ctx: SalaryContext) -> Decimal | None:
    if ctx.overrides.get("base_salary") is not None:
        return money(ctx.overrides["base_salary"])
    return None


def base_salary_from_contract(ctx: SalaryContext) -> Decimal | None:
    return money(ctx.contract.base_salary)


def indemnities_from_override(ctx: SalaryContext) -> Decimal | None:
    if ctx.overrides.get("total_indemnities") is not None:
        return money(ctx.overrides["total_indemnities"])
    return None


def indemnities_from_contract(ctx: SalaryContext) -> Decimal | None:
    indemnities = money(ctx.contract.indemnities)
    return indemnities if indemnities > ZERO else None


def indemnities_from_default_rate(ctx: SalaryContext) -> Decimal | None:
    return money(ctx.base_salary * settings.DEFAULT_INDEMNITY_RATE)


BASE_SALARY_RESOLVERS: tuple[Callable[[SalaryContext], Decimal | None], ...] = (
    base_salary_from_override,
    base_salary_from_contract,
)
INDEMNITY_RESOLVERS: tuple[Callable[[SalaryContext], Decimal | None], ...] = (
    indemnities_from_override,
    indemnities_from_contract,
    indemnities_from_default_rate,
)


def resolve(resolvers, ctx: SalaryContext) -> Decimal:
    for resolver in resolvers:
        value = resolver(ctx)
        if value is not None:
            return value
    return ZERO


@dataclass
class PayrollPage:
    items: list[Payroll] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20


def _replace_applications(payroll: Payroll, plan: list[RecoveryEntry]) -> None:
    payroll.advances_applied.clear()
    for position, entry in enumerate(plan):
        payroll.advances_applied.append(
            PayrollAdvanceApplication(advance_id=entry.advance_id, amount=entry.amount, position=position)
        )


def _creation_key(payroll: Payroll) -> tuple[datetime, str]:
    # SQLite hands back naive timestamps; all of ours are stored in UTC
    created = payroll.created_at
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created, str(payroll.id)


class PayrollGenerator:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.guard = PeriodGuard(db)
        self.ledger = AdvanceLedger(db)
        self.numbering = NumberingService(db)

    # ── Reads ─────────────────────────────────────────────────────────────────

    async def get(self, payroll_id: uuid.UUID) -> Payroll:
        return await load(self.db, Payroll, payroll_id, "Payroll")

    async def list(
        self,
        worker_id: uuid.UUID | None = None,
        month: int | None = None,
        year: int | None = None,
        paid: bool | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> PayrollPage:
        limit = limit or settings.PAYROLL_PAGE_LIMIT
        filters = []
        if worker_id:
            filters.append(Payroll.worker_id == worker_id)
        if month:
            filters.append(Payroll.month == month)
        if year:
            filters.append(Payroll.year == year)
        if paid is not None:
            filters.append(Payroll.paid.is_(paid))

        total = (await self.db.execute(select(func.count(Payroll.id)).where(*filters))).scalar_one()
        result = await self.db.execute(
            select(Payroll)
            .where(*filters)
            .order_by(Payroll.period_start.desc(), Payroll.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return PayrollPage(items=list(result.scalars().all()), total=total, page=page, limit=limit)

    async def latest_unpaid_for(self, worker_id: uuid.UUID) -> Payroll | None:
        result = await self.db.execute(
            select(Payroll)
            .where(Payroll.worker_id == worker_id, Payroll.paid.is_(False))
            .order_by(Payroll.period_end.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def credited_sursalaire_numbers(self, payroll_id: uuid.UUID) -> list[str]:
        result = await self.db.execute(
            select(Sursalaire.number)
            .where(Sursalaire.beneficiary_payroll_id == payroll_id, Sursalaire.status == "credited")
            .order_by(Sursalaire.number)
        )
        return list(result.scalars().all())

    async def resolve_contract(self, worker_id: uuid.UUID, on: date) -> WorkContract | None:
        """Active contract covering ``on``, most recently started first."""
        result = await self.db.execute(
            select(WorkContract)
            .where(
                WorkContract.worker_id == worker_id,
                WorkContract.status == "active",
                WorkContract.start_date <= on,
                or_(WorkContract.end_date.is_(None), WorkContract.end_date >= on),
            )
            .order_by(WorkContract.start_date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    # ── Generate ──────────────────────────────────────────────────────────────

    async def generate(
        self,
        worker_id: uuid.UUID,
        period_start: date,
        period_end: date,
        overrides: dict[str, Any] | None = None,
        actor=None,
    ) -> Payroll:
        actor_id = actor_id_of(actor)
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        worker = await self.db.get(Worker, worker_id)
        if worker is None:
            raise NotFoundError("Worker", worker_id)
        await self.guard.assert_no_overlap(worker_id, period_start, period_end)

        contract = await self.resolve_contract(worker_id, period_end)
        if contract is None:
            raise BusinessRuleError(
                f"Worker {worker.matricule} has no active contract covering {period_end}",
                worker_id=str(worker_id),
            )

        ctx = SalaryContext(overrides=overrides, contract=contract)
        ctx.base_salary = resolve(BASE_SALARY_RESOLVERS, ctx)

        payroll = Payroll(
            id=uuid.uuid4(),
            worker_id=worker_id,
            work_contract_id=contract.id,
            period_start=period_start,
            period_end=period_end,
            month=period_end.month,
            year=period_end.year,
            base_salary=ctx.base_salary,
            total_indemnities=resolve(INDEMNITY_RESOLVERS, ctx),
            payment_method=overrides.get("payment_method") or worker.payment_method or "bank_transfer",
            notes=overrides.get("notes"),
            created_by=actor_id,
            paid=False,
        )
        for name in AMOUNT_OVERRIDES:
            setattr(payroll, name, money(overrides.get(name)))
        manual = payroll.autres_retenues

        # Recovery is planned against the net before any advance is taken
        pre_recovery_net = apply_totals(payroll).net_amount
        plan = plan_recovery(await self.ledger.recoverable_for(worker_id), pre_recovery_net)
        _replace_applications(payroll, plan)
        payroll.autres_retenues = manual + sum((e.amount for e in plan), ZERO)
        apply_totals(payroll)

        payroll_id = payroll.id
        saga = Saga(self.db, "generate_payroll", context={
            "payroll_id": str(payroll_id),
            "worker_id": str(worker_id),
            "recoveries": {str(e.advance_id): str(e.amount) for e in plan},
        })
        saga.step("persist_payroll", partial(self._insert, payroll), partial(self._remove, payroll_id))
        saga.step(
            "final_period_check",
            partial(self._final_period_check, payroll_id, worker_id, period_start, period_end),
        )
        for entry in plan:
            saga.step(
                f"repay_advance_{entry.advance_id}",
                partial(self.ledger.add_repayment, entry.advance_id, entry.amount, payroll_id,
                        "payroll_deduction", actor_id),
                partial(self.ledger.remove_repayment, entry.advance_id, payroll_id),
            )
        await saga.run()

        payroll = await self.get(payroll_id)
        logger.info("payroll %s generated for worker %s (%s to %s), net %s, %d advance(s) recovered",
                    payroll.number, worker_id, period_start, period_end, payroll.net_amount, len(plan))
        return payroll

    async def _insert(self, payroll: Payroll) -> Payroll:
        worker_id, start, end = payroll.worker_id, payroll.period_start, payroll.period_end
        try:
            return await self.numbering.persist_numbered(payroll, "payroll", payroll.year)
        except IntegrityError as exc:
            # (worker_id, period_start) already taken by a concurrent request
            conflicts = await self.guard.find_conflicting(worker_id, start, end)
            if not conflicts:
                raise
            raise PeriodConflictError(
                f"A payroll for {start} to {end} was created concurrently",
                conflicting=conflicts[0],
            ) from exc

    async def _final_period_check(
        self,
        payroll_id: uuid.UUID,
        worker_id: uuid.UUID,
        period_start: date,
        period_end: date,
        yield_to_any: bool = False,
    ) -> None:
        """Detects a concurrent overlapping write that passed the same pre-check.

        Between two new records the later one loses. A period-changing update always loses:
        the other record may have run its own check while this one still had its old period.
        """
        conflicts = await self.guard.find_conflicting(worker_id, period_start, period_end, payroll_id)
        if not conflicts:
            return
        winners = conflicts
        if not yield_to_any:
            own_key = _creation_key(await self.get(payroll_id))
            winners = [p for p in conflicts if _creation_key(p) < own_key]
        if winners:
            raise PeriodConflictError(
                f"Period {period_start} to {period_end} overlaps payroll {winners[0].number}",
                conflicting=winners[0],
            )

    async def _remove(self, payroll_id: uuid.UUID) -> None:
        payroll = await load_or_none(self.db, Payroll, payroll_id)
        if payroll is None:
            return
        await self.db.delete(payroll)
        await self.db.commit()
        logger.info("payroll %s removed by compensation", payroll_id)

    # ── Update ────────────────────────────────────────────────────────────────

    async def update(self, payroll_id: uuid.UUID, changes: dict[str, Any], actor=None) -> Payroll:
        actor_id = actor_id_of(actor)
        changes = {k: v for k, v in changes.items() if k in EDITABLE_FIELDS and v is not None}
        payroll = await self.get(payroll_id)
        if payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} is paid and cannot be modified")
        if "sursalaire" in changes:
            linked = await self.credited_sursalaire_numbers(payroll_id)
            if linked:
                raise StateConflictError(
                    f"Payroll {payroll.number} carries credited sursalaire {', '.join(linked)}; "
                    "its sursalaire amount cannot be edited",
                    sursalaires=linked,
                )

        worker_id = payroll.worker_id
        new_start = changes.get("period_start", payroll.period_start)
        new_end = changes.get("period_end", payroll.period_end)
        period_changed = (new_start, new_end) != (payroll.period_start, payroll.period_end)
        if period_changed:
            await self.guard.assert_no_overlap(worker_id, new_start, new_end, exclude_payroll_id=payroll_id)

        amounts_changed = any(k in GAIN_FIELDS or k in DEDUCTION_FIELDS or k == "cnps_employer"
                              for k in changes)
        manual = money(changes["autres_retenues"]) if "autres_retenues" in changes \
            else payroll.manual_autres_retenues
        previous = [(a.advance_id, money(a.amount)) for a in payroll.advances_applied if a.advance_id]
        snapshot = {name: getattr(payroll, name) for name in SNAPSHOT_FIELDS}

        saga = Saga(self.db, "update_payroll", context={
            "payroll_id": str(payroll_id),
            "previous_recoveries": {str(a): str(m) for a, m in previous},
            "changes": {k: str(v) for k, v in changes.items()},
        })
        if amounts_changed:
            for advance_id, amount in previous:
                saga.step(
                    f"release_advance_{advance_id}",
                    partial(self.ledger.remove_repayment, advance_id, payroll_id),
                    partial(self.ledger.add_repayment, advance_id, amount, payroll_id,
                            "payroll_deduction", actor_id),
                )
        saga.step(
            "write_payroll",
            partial(self._write_update, saga, payroll_id, changes, manual, amounts_changed, actor_id),
            partial(self._restore_snapshot, payroll_id, snapshot, previous, amounts_changed),
        )
        if period_changed:
            saga.step(
                "final_period_check",
                partial(self._final_period_check, payroll_id, worker_id, new_start, new_end, True),
            )
        await saga.run()

        payroll = await self.get(payroll_id)
        logger.info("payroll %s updated (%s)", payroll.number, ", ".join(sorted(changes)) or "no changes")
        return payroll

    async def _write_update(
        self,
        saga: Saga,
        payroll_id: uuid.UUID,
        changes: dict[str, Any],
        manual: Decimal,
        amounts_changed: bool,
        actor_id,
    ) -> None:
        payroll = await self.get(payroll_id)
        if payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} was paid in the meantime")
        for name, value in changes.items():
            if name in GAIN_FIELDS or name in DEDUCTION_FIELDS or name == "cnps_employer":
                value = money(value)
            setattr(payroll, name, value)
        payroll.month = payroll.period_end.month
        payroll.year = payroll.period_end.year

        plan: list[RecoveryEntry] = []
        if amounts_changed:
            payroll.autres_retenues = manual
            _replace_applications(payroll, [])
            pre_recovery_net = apply_totals(payroll).net_amount
            plan = plan_recovery(await self.ledger.recoverable_for(payroll.worker_id), pre_recovery_net)
            _replace_applications(payroll, plan)
            payroll.autres_retenues = manual + sum((e.amount for e in plan), ZERO)
        apply_totals(payroll)
        await commit(self.db, "Payroll", payroll_id)

        for entry in plan:
            saga.step(
                f"repay_advance_{entry.advance_id}",
                partial(self.ledger.add_repayment, entry.advance_id, entry.amount, payroll_id,
                        "payroll_deduction", actor_id),
                partial(self.ledger.remove_repayment, entry.advance_id, payroll_id),
            )

    async def _restore_snapshot(
        self,
        payroll_id: uuid.UUID,
        snapshot: dict[str, Any],
        previous: list[tuple[uuid.UUID, Decimal]],
        amounts_changed: bool,
    ) -> None:
        payroll = await self.get(payroll_id)
        for name, value in snapshot.items():
            setattr(payroll, name, value)
        if amounts_changed:
            _replace_applications(payroll, [RecoveryEntry(a, m) for a, m in previous])
        await commit(self.db, "Payroll", payroll_id)

    # ── Apply a single advance ────────────────────────────────────────────────

    async def apply_advance_to_payroll(
        self, advance_id: uuid.UUID, payroll_id: uuid.UUID, actor=None
    ) -> Payroll:
        """Recovers a newly approved advance from an existing unpaid payroll."""
        actor_id = actor_id_of(actor)
        payroll = await self.get(payroll_id)
        if payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} is paid and cannot be modified")
        advance = await self.ledger.get(advance_id)
        if advance.worker_id != payroll.worker_id:
            raise BusinessRuleError(
                f"Advance {advance.number} belongs to another worker than payroll {payroll.number}"
            )
        if any(a.advance_id == advance_id for a in payroll.advances_applied):
            raise StateConflictError(f"Advance {advance.number} is already recovered by {payroll.number}")

        decision = can_recover(advance, payroll.net_amount)
        if not decision.eligible:
            raise BusinessRuleError(
                f"Advance {advance.number} cannot be recovered from {payroll.number}: {decision.reason}"
            )
        amount = decision.amount

        saga = Saga(self.db, "apply_advance", context={
            "payroll_id": str(payroll_id),
            "advance_id": str(advance_id),
            "amount": str(amount),
        })
        saga.step(
            "write_payroll",
            partial(self._add_application, payroll_id, advance_id, amount),
            partial(self._drop_application, payroll_id, advance_id, amount),
        )
        saga.step(
            "repay_advance",
            partial(self.ledger.add_repayment, advance_id, amount, payroll_id, "payroll_deduction", actor_id),
            partial(self.ledger.remove_repayment, advance_id, payroll_id),
        )
        await saga.run()

        payroll = await self.get(payroll_id)
        logger.info("advance %s: %s recovered from payroll %s", advance_id, amount, payroll.number)
        return payroll

    async def _add_application(self, payroll_id: uuid.UUID, advance_id: uuid.UUID, amount: Decimal) -> None:
        payroll = await self.get(payroll_id)
        if payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} was paid in the meantime")
        payroll.advances_applied.append(PayrollAdvanceApplication(
            advance_id=advance_id, amount=amount, position=len(payroll.advances_applied),
        ))
        payroll.autres_retenues = money(payroll.autres_retenues) + amount
        apply_totals(payroll)
        await commit(self.db, "Payroll", payroll_id)

    async def _drop_application(self, payroll_id: uuid.UUID, advance_id: uuid.UUID, amount: Decimal) -> None:
        payroll = await self.get(payroll_id)
        matching = [a for a in payroll.advances_applied if a.advance_id == advance_id]
        for application in matching:
            payroll.advances_applied.remove(application)
        if matching:
            payroll.autres_retenues = max(ZERO, money(payroll.autres_retenues) - amount)
            apply_totals(payroll)
            await commit(self.db, "Payroll", payroll_id)

    # ── Delete / pay ──────────────────────────────────────────────────────────

    async def delete(self, payroll_id: uuid.UUID) -> None:
        payroll = await self.get(payroll_id)
        if payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} is paid and cannot be deleted")
        number = payroll.number
        advance_ids = [a.advance_id for a in payroll.advances_applied if a.advance_id]

        # Advances first: a retry after a crash finds them already restored
        for advance_id in advance_ids:
            await self.ledger.remove_repayment(advance_id, payroll_id)

        payroll = await self.get(payroll_id)
        await self.db.delete(payroll)
        await commit(self.db, "Payroll", payroll_id)
        logger.info("payroll %s deleted, %d advance(s) restored", number, len(advance_ids))

    async def mark_as_paid(
        self,
        payroll_id: uuid.UUID,
        payment_method: str | None = None,
        payment_reference: str | None = None,
    ) -> Payroll:
        payroll = await self.get(payroll_id)
        if payroll.paid:
            raise StateConflictError(f"Payroll {payroll.number} is already paid")
        payroll.paid = True
        payroll.paid_at = datetime.now(timezone.utc)
        if payment_method:
            payroll.payment_method = payment_method
        if payment_reference:
            payroll.payment_reference = payment_reference
        await commit(self.db, "Payroll", payroll_id)
        logger.info("payroll %s marked as paid", payroll.number)
        return payroll
