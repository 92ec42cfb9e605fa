"""
AdvanceLedger: lifecycle of cash advances and their repayment history.

    draft|requested -> approved -> (recovered by payrolls) -> closed
    draft|requested -> rejected
    draft|requested|approved -> cancelled

total_repaid and remaining are always recomputed from the full repayment list, so a
ledger that drifted heals on the next write.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from staffpay.core.errors import (
    BusinessRuleError, ConflictError, NotFoundError, StateConflictError, ValidationError,
)
from staffpay.core.money import ZERO, money, percent_of
from staffpay.models.advance import ADVANCE_REASONS, Advance, AdvanceRepayment
from staffpay.models.payroll import Payroll
from staffpay.models.worker import Worker
from staffpay.services.numbering import NumberingService
from staffpay.services.period_guard import PeriodGuard
from staffpay.services.persistence import actor_id_of, commit, load, load_or_none

logger = logging.getLogger(__name__)

CREATABLE_STATUSES = ("draft", "requested", "approved")
PENDING_STATUSES = ("draft", "requested")


@dataclass(frozen=True)
class RecoveryDecision:
    eligible: bool
    amount: Decimal = ZERO
    reason: str | None = None


@dataclass(frozen=True)
class RecoveryEntry:
    advance_id: uuid.UUID
    amount: Decimal


def can_recover(advance, payroll_net) -> RecoveryDecision:
    """How much of ``advance`` a payroll with ``payroll_net`` net pay may recover."""
    net = money(payroll_net)
    remaining = money(advance.remaining)
    if advance.status != "approved":
        return RecoveryDecision(False, reason=f"advance is {advance.status}, not approved")
    if remaining <= ZERO:
        return RecoveryDecision(False, reason="nothing left to recover")
    if net <= ZERO:
        return RecoveryDecision(False, reason="payroll net amount is zero")

    monthly = money(advance.monthly_recovery)
    percentage = Decimal(str(advance.recovery_percentage or 0))
    if monthly > ZERO:
        amount = min(monthly, remaining)
    elif percentage > ZERO:
        amount = min(percent_of(net, percentage), remaining)
    else:
        amount = ZERO

    cap = money(advance.max_recovery_amount)
    if cap > ZERO:
        amount = min(amount, cap)

    if amount <= ZERO:
        return RecoveryDecision(False, reason="recovery policy yields no amount")
    if amount > net:
        return RecoveryDecision(False, amount, reason=f"recovery {amount} exceeds net pay {net}")
    return RecoveryDecision(True, amount)


def plan_recovery(advances: Iterable, payroll_net) -> list[RecoveryEntry]:
    """
    Oldest-first recovery plan. Each advance is capped against the net pay left after
    the advances before it, so the plan never exceeds the payroll's own net.
    """
    running_net = money(payroll_net)
    plan = []
    for advance in advances:
        decision = can_recover(advance, running_net)
        if not decision.eligible:
            logger.debug("advance %s not recovered: %s", advance.id, decision.reason)
            continue
        plan.append(RecoveryEntry(advance.id, decision.amount))
        running_net -= decision.amount
    return plan


def check_invariants(advance) -> list[str]:
    problems = []
    repaid = sum((money(r.amount) for r in advance.repayments), ZERO)
    if money(advance.total_repaid) != repaid:
        problems.append(f"total_repaid {advance.total_repaid} != sum of repayments {repaid}")
    if money(advance.remaining) != money(advance.amount) - money(advance.total_repaid):
        problems.append(
            f"remaining {advance.remaining} != amount {advance.amount} - total_repaid {advance.total_repaid}"
        )
    if money(advance.remaining) < ZERO:
        problems.append(f"remaining {advance.remaining} is negative")
    if advance.status == "closed" and money(advance.remaining) != ZERO:
        problems.append(f"closed advance still has {advance.remaining} remaining")
    return problems


def validate_recovery_policy(amount, monthly_recovery, recovery_percentage, max_recovery_amount) -> None:
    if money(amount) <= ZERO:
        raise ValidationError("Advance amount must be positive", amount=str(amount))
    if money(monthly_recovery) < ZERO or money(monthly_recovery) > money(amount):
        raise ValidationError(
            "Monthly recovery must be between 0 and the advance amount",
            monthly_recovery=str(monthly_recovery),
        )
    pct = Decimal(str(recovery_percentage or 0))
    if pct < ZERO or pct > Decimal("100"):
        raise ValidationError(
            "Recovery percentage must be between 0 and 100", recovery_percentage=str(pct)
        )
    if money(max_recovery_amount) < ZERO:
        raise ValidationError(
            "Maximum recovery amount cannot be negative", max_recovery_amount=str(max_recovery_amount)
        )


def _recompute(advance: Advance) -> None:
    advance.total_repaid = sum((money(r.amount) for r in advance.repayments), ZERO)
    advance.remaining = money(advance.amount) - advance.total_repaid


class AdvanceLedger:

    def __init__(self, db: AsyncSession):
        self.db = db
        self.guard = PeriodGuard(db)
        self.numbering = NumberingService(db)

    async def get(self, advance_id: uuid.UUID) -> Advance:
        return await load(self.db, Advance, advance_id, "Advance")

    async def list(
        self,
        worker_id: uuid.UUID | None = None,
        status: str | None = None,
    ) -> list[Advance]:
        query = select(Advance).order_by(Advance.requested_at.desc())
        if worker_id:
            query = query.where(Advance.worker_id == worker_id)
        if status:
            query = query.where(Advance.status == status)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def recoverable_for(self, worker_id: uuid.UUID) -> list[Advance]:
        """Approved advances with a balance, oldest request first."""
        result = await self.db.execute(
            select(Advance)
            .where(
                Advance.worker_id == worker_id,
                Advance.status == "approved",
                Advance.remaining > 0,
            )
            .order_by(Advance.requested_at, Advance.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def create(
        self,
        worker_id: uuid.UUID,
        amount,
        monthly_recovery=ZERO,
        recovery_percentage=ZERO,
        max_recovery_amount=ZERO,
        status: str = "requested",
        requested_at: datetime | None = None,
        reason: str = "other",
        notes: str | None = None,
        payment_method: str = "bank_transfer",
        actor=None,
    ) -> Advance:
        actor_id = actor_id_of(actor)
        if status not in CREATABLE_STATUSES:
            raise ValidationError(f"An advance cannot be created as {status}", status=status)
        if reason not in ADVANCE_REASONS:
            raise ValidationError(f"Unknown advance reason {reason}", reason=reason)
        validate_recovery_policy(amount, monthly_recovery, recovery_percentage, max_recovery_amount)

        worker = await self.db.get(Worker, worker_id)
        if worker is None:
            raise NotFoundError("Worker", worker_id)

        requested_at = requested_at or datetime.now(timezone.utc)
        await self.guard.assert_no_settled_month(worker_id, requested_at.date())

        now = datetime.now(timezone.utc)
        advance = Advance(
            id=uuid.uuid4(),
            worker_id=worker_id,
            amount=money(amount),
            remaining=money(amount),
            total_repaid=ZERO,
            monthly_recovery=money(monthly_recovery),
            recovery_percentage=Decimal(str(recovery_percentage or 0)),
            max_recovery_amount=money(max_recovery_amount),
            status=status,
            reason=reason,
            notes=notes,
            payment_method=payment_method,
            requested_at=requested_at,
            approved_at=now if status == "approved" else None,
            approved_by=actor_id if status == "approved" else None,
            created_by=actor_id,
        )
        await self.numbering.persist_numbered(advance, "advance", requested_at.year)
        advance_id = advance.id
        logger.info("advance %s created for worker %s (%s, %s)",
                    advance.number, worker_id, advance.amount, status)

        if status == "approved":
            await self._auto_apply(advance_id, worker_id, actor_id)
        return await self.get(advance_id)

    async def approve(
        self,
        advance_id: uuid.UUID,
        actor=None,
        monthly_recovery=None,
        recovery_percentage=None,
        max_recovery_amount=None,
    ) -> Advance:
        actor_id = actor_id_of(actor)
        advance = await self.get(advance_id)
        if advance.status not in PENDING_STATUSES:
            raise StateConflictError(
                f"Advance {advance.number} is {advance.status} and cannot be approved",
                status=advance.status,
            )
        if monthly_recovery is not None:
            advance.monthly_recovery = money(monthly_recovery)
        if recovery_percentage is not None:
            advance.recovery_percentage = Decimal(str(recovery_percentage))
        if max_recovery_amount is not None:
            advance.max_recovery_amount = money(max_recovery_amount)
        validate_recovery_policy(
            advance.amount, advance.monthly_recovery,
            advance.recovery_percentage, advance.max_recovery_amount,
        )

        advance.status = "approved"
        advance.approved_at = datetime.now(timezone.utc)
        advance.approved_by = actor_id
        worker_id = advance.worker_id
        number = advance.number
        await commit(self.db, "Advance", advance_id)
        logger.info("advance %s approved", number)

        await self._auto_apply(advance_id, worker_id, actor_id)
        return await self.get(advance_id)

    async def reject(self, advance_id: uuid.UUID, reason: str, actor=None) -> Advance:
        if not reason or not reason.strip():
            raise ValidationError("A rejection reason is required")
        advance = await self.get(advance_id)
        if advance.status not in PENDING_STATUSES:
            raise StateConflictError(
                f"Advance {advance.number} is {advance.status} and cannot be rejected",
                status=advance.status,
            )
        advance.status = "rejected"
        advance.rejected_at = datetime.now(timezone.utc)
        advance.rejected_by = actor_id_of(actor)
        advance.rejected_reason = reason.strip()
        await commit(self.db, "Advance", advance_id)
        logger.info("advance %s rejected", advance.number)
        return advance

    async def cancel(self, advance_id: uuid.UUID, actor=None) -> Advance:
        advance = await self.get(advance_id)
        if advance.status not in PENDING_STATUSES + ("approved",):
            raise StateConflictError(
                f"Advance {advance.number} is {advance.status} and cannot be cancelled",
                status=advance.status,
            )
        # Recorded repayments stay as history; no payroll recovers a cancelled advance
        advance.status = "cancelled"
        advance.cancelled_at = datetime.now(timezone.utc)
        advance.cancelled_by = actor_id_of(actor)
        await commit(self.db, "Advance", advance_id)
        logger.info("advance %s cancelled", advance.number)
        return advance

    async def update(
        self,
        advance_id: uuid.UUID,
        notes: str | None = None,
        reason: str | None = None,
        actor=None,
    ) -> Advance:
        """Edits the free-text fields. Amounts and the recovery policy are not editable here."""
        advance = await self.get(advance_id)
        if advance.status in ("closed", "cancelled"):
            raise StateConflictError(
                f"Advance {advance.number} is {advance.status} and cannot be modified",
                status=advance.status,
            )
        changed = []
        if notes is not None:
            advance.notes = notes
            changed.append("notes")
        if reason is not None:
            advance.reason = reason
            changed.append("reason")
        if changed:
            await commit(self.db, "Advance", advance_id)
            logger.info("advance %s updated by %s (%s)", advance.number, actor_id_of(actor), ", ".join(changed))
        return advance

    async def close(self, advance_id: uuid.UUID) -> Advance:
        advance = await self.get(advance_id)
        if advance.status != "approved":
            raise StateConflictError(
                f"Advance {advance.number} is {advance.status} and cannot be closed",
                status=advance.status,
            )
        if money(advance.remaining) > ZERO:
            raise BusinessRuleError(
                f"Advance {advance.number} still has {advance.remaining} to recover",
                remaining=str(advance.remaining),
            )
        advance.status = "closed"
        advance.closed_at = datetime.now(timezone.utc)
        await commit(self.db, "Advance", advance_id)
        logger.info("advance %s closed", advance.number)
        return advance

    async def mark_disbursed(
        self,
        advance_id: uuid.UUID,
        payment_method: str | None = None,
        payment_reference: str | None = None,
        actor=None,
    ) -> Advance:
        """Records that the cash went out. Status stays approved so recovery continues."""
        advance = await self.get(advance_id)
        if advance.status != "approved":
            raise StateConflictError(
                f"Advance {advance.number} must be approved before disbursement",
                status=advance.status,
            )
        if advance.paid_at is not None:
            raise StateConflictError(f"Advance {advance.number} was already disbursed")
        advance.paid_at = datetime.now(timezone.utc)
        advance.paid_by = actor_id_of(actor)
        if payment_method:
            advance.payment_method = payment_method
        advance.payment_reference = payment_reference
        await commit(self.db, "Advance", advance_id)
        logger.info("advance %s disbursed", advance.number)
        return advance

    # ── Repayments ────────────────────────────────────────────────────────────

    async def add_repayment(
        self,
        advance_id: uuid.UUID,
        amount,
        payroll_id: uuid.UUID | None = None,
        payment_method: str = "payroll_deduction",
        actor=None,
        notes: str | None = None,
    ) -> Advance:
        amount = money(amount)
        if amount <= ZERO:
            raise ValidationError("Repayment amount must be positive", amount=str(amount))

        # Reloaded: the recovery plan may have been computed from a stale read
        advance = await self.get(advance_id)
        if payroll_id is not None and any(r.payroll_id == payroll_id for r in advance.repayments):
            logger.debug("advance %s already repaid by payroll %s", advance.number, payroll_id)
            return advance
        if advance.status != "approved":
            raise StateConflictError(
                f"Advance {advance.number} is {advance.status}, repayments need an approved advance",
                status=advance.status,
            )
        if amount > money(advance.remaining):
            raise BusinessRuleError(
                f"Repayment {amount} exceeds the {advance.remaining} remaining on {advance.number}",
                amount=str(amount),
                remaining=str(advance.remaining),
            )

        advance.repayments.append(AdvanceRepayment(
            amount=amount,
            payroll_id=payroll_id,
            payment_method=payment_method,
            recorded_by=actor_id_of(actor),
            notes=notes,
        ))
        _recompute(advance)
        closed = advance.remaining == ZERO
        if closed:
            advance.status = "closed"
            advance.closed_at = datetime.now(timezone.utc)
        await commit(self.db, "Advance", advance_id)
        if closed:
            logger.info("advance %s fully recovered and closed", advance.number)
        return advance

    async def add_manual_repayment(
        self,
        advance_id: uuid.UUID,
        amount,
        payment_method: str = "cash",
        notes: str | None = None,
        actor=None,
    ) -> Advance:
        return await self.add_repayment(
            advance_id, amount, payroll_id=None, payment_method=payment_method, actor=actor, notes=notes
        )

    async def remove_repayment(self, advance_id: uuid.UUID, payroll_id: uuid.UUID) -> Advance | None:
        """Reverses what ``payroll_id`` recovered. Safe to call repeatedly."""
        advance = await load_or_none(self.db, Advance, advance_id)
        if advance is None:
            logger.warning("advance %s is gone, nothing to restore for payroll %s", advance_id, payroll_id)
            return None
        matching = [r for r in advance.repayments if r.payroll_id == payroll_id]
        if not matching:
            return advance

        restored = sum((money(r.amount) for r in matching), ZERO)
        for repayment in matching:
            advance.repayments.remove(repayment)
        _recompute(advance)
        reopened = advance.status == "closed" and advance.remaining > ZERO
        if reopened:
            advance.status = "approved"
            advance.closed_at = None
        await commit(self.db, "Advance", advance_id)
        logger.info("advance %s: %s restored after payroll %s was released",
                    advance.number, restored, payroll_id)
        if reopened:
            logger.info("advance %s reopened", advance.number)
        return advance

    async def release_orphaned_repayments(self) -> int:
        """Finishes interrupted payroll deletions: drops repayments whose payroll is gone."""
        result = await self.db.execute(
            select(AdvanceRepayment.advance_id, AdvanceRepayment.payroll_id)
            .where(
                AdvanceRepayment.payroll_id.is_not(None),
                AdvanceRepayment.payroll_id.not_in(select(Payroll.id)),
            )
            .distinct()
        )
        orphans = result.all()
        for advance_id, payroll_id in orphans:
            logger.warning("releasing repayment of advance %s for missing payroll %s", advance_id, payroll_id)
            await self.remove_repayment(advance_id, payroll_id)
        return len(orphans)

    async def worker_stats(self, worker_id: uuid.UUID) -> dict:
        result = await self.db.execute(
            select(
                Advance.status,
                func.count(Advance.id),
                func.coalesce(func.sum(Advance.amount), 0),
                func.coalesce(func.sum(Advance.total_repaid), 0),
                func.coalesce(func.sum(Advance.remaining), 0),
            )
            .where(Advance.worker_id == worker_id)
            .group_by(Advance.status)
        )
        by_status = {}
        total_amount = total_repaid = outstanding = ZERO
        for status, count, amount, repaid, remaining in result.all():
            by_status[status] = count
            total_amount += money(amount)
            total_repaid += money(repaid)
            if status == "approved":
                outstanding += money(remaining)
        return {
            "worker_id": worker_id,
            "total_advances": sum(by_status.values()),
            "by_status": by_status,
            "total_amount": total_amount,
            "total_repaid": total_repaid,
            "outstanding": outstanding,
        }

    async def _auto_apply(self, advance_id: uuid.UUID, worker_id: uuid.UUID, actor_id) -> None:
        """Best effort: recover a freshly approved advance from the latest unpaid payroll."""
        from staffpay.services.payroll_generator import PayrollGenerator

        generator = PayrollGenerator(self.db)
        payroll = await generator.latest_unpaid_for(worker_id)
        if payroll is None:
            return
        payroll_id = payroll.id
        try:
            await generator.apply_advance_to_payroll(advance_id, payroll_id, actor=actor_id)
        except (BusinessRuleError, ConflictError) as exc:
            logger.warning("advance %s not applied to payroll %s: %s", advance_id, payroll_id, exc.message)
