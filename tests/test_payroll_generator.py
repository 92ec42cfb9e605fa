"""
Tests for PayrollGenerator – contract resolution, indemnity precedence, advance
recovery, compensation on partial failure, update / delete / pay.
"""
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import get_type_hints

import pytest
from sqlalchemy import func, select

from staffpay.core.errors import (
    BusinessRuleError, NotFoundError, PeriodConflictError, PersistenceError, StateConflictError,
)
from staffpay.models.payroll import Payroll
from staffpay.services.advance_ledger import AdvanceLedger, check_invariants
from staffpay.services.payroll_generator import (
    INDEMNITY_RESOLVERS, PayrollGenerator, SalaryContext, resolve,
)
from tests.conftest import make_contract, make_worker

JAN = (date(2025, 1, 1), date(2025, 1, 31))
FEB = (date(2025, 2, 1), date(2025, 2, 28))
NO_INDEMNITIES = {"total_indemnities": 0}


async def approved_advance(db, worker, amount, monthly=0, requested_at=None, **kwargs):
    return await AdvanceLedger(db).create(
        worker.id, Decimal(amount), monthly_recovery=Decimal(monthly), status="approved",
        requested_at=requested_at, **kwargs,
    )


async def payroll_count(db) -> int:
    return (await db.execute(select(func.count(Payroll.id)))).scalar_one()


# ── Indemnity resolvers ───────────────────────────────────────────────────────

def indemnities(overrides, contract_indemnities, base):
    ctx = SalaryContext(
        overrides=overrides,
        contract=SimpleNamespace(indemnities=Decimal(contract_indemnities)),
        base_salary=Decimal(base),
    )
    return resolve(INDEMNITY_RESOLVERS, ctx)


def test_indemnity_override_wins():
    assert indemnities({"total_indemnities": 9000}, 12000, 150000) == Decimal("9000")


def test_indemnity_override_of_zero_is_kept():
    assert indemnities({"total_indemnities": 0}, 12000, 150000) == Decimal("0")


def test_indemnity_from_contract():
    assert indemnities({}, 12000, 150000) == Decimal("12000")


def test_indemnity_default_rate():
    assert indemnities({}, 0, 150000) == Decimal("7500")
    assert indemnities({}, 0, 150010) == Decimal("7501")  # 7500.5 rounds half up


def test_annotations_resolve_to_builtin_list():
    hints = get_type_hints(PayrollGenerator._restore_snapshot)
    assert hints["previous"] == list[tuple[uuid.UUID, Decimal]]
    assert get_type_hints(PayrollGenerator.credited_sursalaire_numbers)["return"] == list[str]


# ── Generation ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_generate_from_contract(db, worker, contract):
    payroll = await PayrollGenerator(db).generate(worker.id, *JAN)

    assert payroll.number == "PAY-2025-0001"
    assert payroll.work_contract_id == contract.id
    assert payroll.base_salary == Decimal("150000")
    assert payroll.total_indemnities == Decimal("7500")
    assert payroll.gross_salary == Decimal("157500")
    assert payroll.net_amount == Decimal("157500")
    assert (payroll.month, payroll.year) == (1, 2025)
    assert payroll.paid is False


@pytest.mark.asyncio
async def test_generate_with_overrides(db, worker, contract):
    payroll = await PayrollGenerator(db).generate(worker.id, *JAN, overrides={
        "base_salary": 120000,
        "total_indemnities": 0,
        "transport": 15000,
        "overtime_hours": 5000,
        "accompte": 10000,
        "absences": 4000,
        "cnps_employer": 9000,
        "notes": "January",
    })

    assert payroll.gross_salary == Decimal("140000")
    assert payroll.total_retenues == Decimal("14000")
    assert payroll.net_amount == Decimal("126000")
    assert payroll.cnps_employer == Decimal("9000")
    assert payroll.notes == "January"


@pytest.mark.asyncio
async def test_generate_unknown_worker(db):
    with pytest.raises(NotFoundError):
        await PayrollGenerator(db).generate(uuid.uuid4(), *JAN)


@pytest.mark.asyncio
async def test_generate_without_active_contract(db, worker):
    await make_contract(db, worker, status="suspended")
    with pytest.raises(BusinessRuleError):
        await PayrollGenerator(db).generate(worker.id, *JAN)
    assert await payroll_count(db) == 0


@pytest.mark.asyncio
async def test_contract_must_cover_period_end(db, worker):
    await make_contract(db, worker, start_date=date(2024, 1, 1), end_date=date(2025, 1, 15))
    with pytest.raises(BusinessRuleError):
        await PayrollGenerator(db).generate(worker.id, *JAN)


@pytest.mark.asyncio
async def test_most_recently_started_contract_is_used(db, worker):
    await make_contract(db, worker, base_salary=Decimal("100000"), start_date=date(2023, 1, 1))
    newer = await make_contract(db, worker, base_salary=Decimal("180000"), start_date=date(2024, 6, 1))

    payroll = await PayrollGenerator(db).generate(worker.id, *JAN)

    assert payroll.work_contract_id == newer.id
    assert payroll.base_salary == Decimal("180000")


# ── Period overlap ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_overlapping_period_conflicts_with_first_payroll(db, worker, contract):
    generator = PayrollGenerator(db)
    first = await generator.generate(worker.id, *JAN)

    with pytest.raises(PeriodConflictError) as exc_info:
        await generator.generate(worker.id, date(2025, 1, 15), date(2025, 2, 15))

    assert exc_info.value.extra["conflicting_id"] == str(first.id)
    assert exc_info.value.extra["conflicting_number"] == first.number
    assert await payroll_count(db) == 1


@pytest.mark.asyncio
async def test_consecutive_periods_are_accepted(db, worker, contract):
    generator = PayrollGenerator(db)
    await generator.generate(worker.id, *JAN)
    second = await generator.generate(worker.id, *FEB)
    assert second.number == "PAY-2025-0002"


@pytest.mark.asyncio
async def test_final_period_check_later_record_loses(db, worker, contract):
    generator = PayrollGenerator(db)
    first = await generator.generate(worker.id, *JAN)

    # A concurrent request that passed the pre-check before `first` was committed
    racer = Payroll(
        id=uuid.uuid4(), number="PAY-2025-9999", worker_id=worker.id,
        period_start=date(2025, 1, 10), period_end=date(2025, 2, 9), month=2, year=2025,
        created_at=datetime.now(timezone.utc) + timedelta(seconds=1),
    )
    db.add(racer)
    await db.commit()

    with pytest.raises(PeriodConflictError) as exc_info:
        await generator._final_period_check(racer.id, worker.id, racer.period_start, racer.period_end)
    assert exc_info.value.extra["conflicting_id"] == str(first.id)

    # The earlier record keeps its period
    await generator._final_period_check(first.id, worker.id, *JAN)


# ── Advance recovery ──────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_monthly_recovery_scenario(db, worker, contract):
    advance = await approved_advance(db, worker, 60000, monthly=20000)

    payroll = await PayrollGenerator(db).generate(worker.id, *JAN, overrides=NO_INDEMNITIES)

    advance = await AdvanceLedger(db).get(advance.id)
    assert payroll.gross_salary == Decimal("150000")
    assert payroll.autres_retenues == Decimal("20000")
    assert payroll.net_amount == Decimal("130000")
    assert [(a.advance_id, a.amount) for a in payroll.advances_applied] == [(advance.id, Decimal("20000"))]
    assert advance.remaining == Decimal("40000")
    assert advance.repayments[0].payroll_id == payroll.id
    assert check_invariants(advance) == []


@pytest.mark.asyncio
async def test_recovery_added_to_manual_deduction(db, worker, contract):
    await approved_advance(db, worker, 60000, monthly=20000)

    payroll = await PayrollGenerator(db).generate(
        worker.id, *JAN, overrides={**NO_INDEMNITIES, "autres_retenues": 5000}
    )

    assert payroll.autres_retenues == Decimal("25000")
    assert payroll.manual_autres_retenues == Decimal("5000")
    assert payroll.net_amount == Decimal("125000")


@pytest.mark.asyncio
async def test_recovery_closes_advance(db, worker, contract):
    advance = await approved_advance(db, worker, 40000, monthly=40000)

    await PayrollGenerator(db).generate(worker.id, *JAN, overrides=NO_INDEMNITIES)

    advance = await AdvanceLedger(db).get(advance.id)
    assert advance.remaining == Decimal("0")
    assert advance.status == "closed"
    assert advance.closed_at is not None


@pytest.mark.asyncio
async def test_total_recovery_never_exceeds_net(db, worker, contract):
    old = await approved_advance(db, worker, 200000, monthly=100000,
                                 requested_at=datetime(2024, 10, 1, tzinfo=timezone.utc))
    new = await approved_advance(db, worker, 200000, monthly=100000,
                                 requested_at=datetime(2024, 11, 1, tzinfo=timezone.utc))

    payroll = await PayrollGenerator(db).generate(worker.id, *JAN, overrides=NO_INDEMNITIES)

    assert [a.advance_id for a in payroll.advances_applied] == [old.id]
    assert payroll.recovered_total <= payroll.gross_salary - payroll.accompte - payroll.absences
    assert payroll.net_amount == Decimal("50000")
    assert (await AdvanceLedger(db).get(new.id)).remaining == Decimal("200000")


@pytest.mark.asyncio
async def test_unapproved_advances_are_not_recovered(db, worker, contract):
    await AdvanceLedger(db).create(worker.id, Decimal("60000"), monthly_recovery=Decimal("20000"))

    payroll = await PayrollGenerator(db).generate(worker.id, *JAN, overrides=NO_INDEMNITIES)

    assert payroll.advances_applied == []
    assert payroll.net_amount == Decimal("150000")


async def two_advances(db, worker) -> tuple[uuid.UUID, uuid.UUID]:
    # Ids only: the saga rollback expires every object held by the session
    first = await approved_advance(db, worker, 60000, monthly=20000,
                                   requested_at=datetime(2024, 10, 1, tzinfo=timezone.utc))
    second = await approved_advance(db, worker, 30000, monthly=10000,
                                    requested_at=datetime(2024, 11, 1, tzinfo=timezone.utc))
    return first.id, second.id


def fail_repayment_of(monkeypatch, failing_id):
    original = AdvanceLedger.add_repayment

    async def flaky_add_repayment(self, advance_id, *args, **kwargs):
        if advance_id == failing_id:
            raise RuntimeError("write failed")
        return await original(self, advance_id, *args, **kwargs)

    monkeypatch.setattr(AdvanceLedger, "add_repayment", flaky_add_repayment)


@pytest.mark.asyncio
async def test_failed_repayment_rolls_back_everything(db, worker, contract, monkeypatch):
    first_id, second_id = await two_advances(db, worker)
    worker_id = worker.id
    fail_repayment_of(monkeypatch, second_id)

    with pytest.raises(RuntimeError, match="write failed"):
        await PayrollGenerator(db).generate(worker_id, *JAN, overrides=NO_INDEMNITIES)

    ledger = AdvanceLedger(db)
    restored = await ledger.get(first_id)
    assert await payroll_count(db) == 0
    assert restored.remaining == Decimal("60000")
    assert restored.repayments == []
    assert (await ledger.get(second_id)).remaining == Decimal("30000")


@pytest.mark.asyncio
async def test_failed_compensation_escalates(db, worker, contract, monkeypatch):
    first_id, second_id = await two_advances(db, worker)
    worker_id = worker.id
    fail_repayment_of(monkeypatch, second_id)

    async def broken_remove_repayment(self, advance_id, payroll_id):
        raise RuntimeError("restore failed")

    monkeypatch.setattr(AdvanceLedger, "remove_repayment", broken_remove_repayment)

    with pytest.raises(PersistenceError) as exc_info:
        await PayrollGenerator(db).generate(worker_id, *JAN, overrides=NO_INDEMNITIES)

    context = exc_info.value.context
    assert context["saga"] == "generate_payroll"
    assert context["failed_step"] == f"repay_advance_{second_id}"
    assert context["compensation_step"] == f"repay_advance_{first_id}"
    assert context["compensation_error"] == "restore failed"
    assert context["recoveries"] == {str(first_id): "20000", str(second_id): "10000"}


# ── Update ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_update_recomputes_recovery_and_keeps_manual_part(db, worker, contract):
    advance = await approved_advance(db, worker, 60000, monthly=20000)
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN, overrides={**NO_INDEMNITIES, "autres_retenues": 5000})

    payroll = await generator.update(payroll.id, {"accompte": 10000})

    advance = await AdvanceLedger(db).get(advance.id)
    assert payroll.accompte == Decimal("10000")
    assert payroll.autres_retenues == Decimal("25000")
    assert payroll.net_amount == Decimal("115000")
    assert advance.remaining == Decimal("40000")
    assert advance.number_of_repayments == 1


@pytest.mark.asyncio
async def test_update_reduces_recovery_when_net_shrinks(db, worker, contract):
    advance = await approved_advance(db, worker, 60000, monthly=20000)
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN, overrides=NO_INDEMNITIES)

    # Net before recovery drops to 15000: the 20000 instalment no longer fits
    payroll = await generator.update(payroll.id, {"absences": 135000})

    advance = await AdvanceLedger(db).get(advance.id)
    assert payroll.advances_applied == []
    assert payroll.autres_retenues == Decimal("0")
    assert payroll.net_amount == Decimal("15000")
    assert advance.remaining == Decimal("60000")


@pytest.mark.asyncio
async def test_update_period_checks_overlap(db, worker, contract):
    generator = PayrollGenerator(db)
    jan = await generator.generate(worker.id, *JAN)
    await generator.generate(worker.id, *FEB)

    with pytest.raises(PeriodConflictError):
        await generator.update(jan.id, {"period_end": date(2025, 2, 10)})

    updated = await generator.update(jan.id, {"period_start": date(2025, 1, 2), "notes": "shifted"})
    assert updated.period_start == date(2025, 1, 2)
    assert updated.notes == "shifted"


@pytest.mark.asyncio
async def test_widened_period_loses_to_newer_overlapping_payroll(db, worker, contract, monkeypatch):
    generator = PayrollGenerator(db)
    jan = await generator.generate(worker.id, *JAN)
    feb = await generator.generate(worker.id, *FEB)
    jan_id, feb_id, worker_id = jan.id, feb.id, worker.id

    # February was generated while January still ended on the 31st
    async def stale_check(*args, **kwargs):
        return None

    monkeypatch.setattr(generator.guard, "assert_no_overlap", stale_check)

    with pytest.raises(PeriodConflictError) as exc_info:
        await generator.update(jan_id, {"period_end": date(2025, 2, 15)})
    assert exc_info.value.extra["conflicting_id"] == str(feb_id)

    jan = await generator.get(jan_id)
    assert (jan.period_start, jan.period_end) == JAN
    assert (jan.month, jan.year) == (1, 2025)
    assert [p.id for p in await generator.guard.find_conflicting(worker_id, *FEB)] == [feb_id]


@pytest.mark.asyncio
async def test_paid_payroll_is_immutable(db, worker, contract):
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN)
    await generator.mark_as_paid(payroll.id)

    with pytest.raises(StateConflictError):
        await generator.update(payroll.id, {"transport": 1000})
    with pytest.raises(StateConflictError):
        await generator.delete(payroll.id)


# ── Delete / pay ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_restores_and_reopens_advances(db, worker, contract):
    advance = await approved_advance(db, worker, 20000, monthly=20000)
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN, overrides=NO_INDEMNITIES)
    assert (await AdvanceLedger(db).get(advance.id)).status == "closed"

    await generator.delete(payroll.id)

    advance = await AdvanceLedger(db).get(advance.id)
    assert await payroll_count(db) == 0
    assert advance.remaining == Decimal("20000")
    assert advance.total_repaid == Decimal("0")
    assert advance.status == "approved"
    assert advance.closed_at is None


@pytest.mark.asyncio
async def test_delete_unknown_payroll(db):
    with pytest.raises(NotFoundError):
        await PayrollGenerator(db).delete(uuid.uuid4())


@pytest.mark.asyncio
async def test_mark_as_paid_is_one_way(db, worker, contract):
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN)

    payroll = await generator.mark_as_paid(payroll.id, payment_method="mobile_money", payment_reference="MM-42")

    assert payroll.paid is True
    assert payroll.paid_at is not None
    assert payroll.payment_method == "mobile_money"
    with pytest.raises(StateConflictError):
        await generator.mark_as_paid(payroll.id)


# ── apply_advance_to_payroll / list ───────────────────────────────────────────

@pytest.mark.asyncio
async def test_apply_advance_to_existing_payroll(db, worker, contract):
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN, overrides=NO_INDEMNITIES)
    advance = await AdvanceLedger(db).create(worker.id, Decimal("30000"), monthly_recovery=Decimal("30000"))
    # approved directly in the ledger table, without the auto-apply path
    advance.status = "approved"
    await db.commit()

    payroll = await generator.apply_advance_to_payroll(advance.id, payroll.id)

    assert payroll.autres_retenues == Decimal("30000")
    assert payroll.net_amount == Decimal("120000")
    assert (await AdvanceLedger(db).get(advance.id)).status == "closed"
    with pytest.raises(StateConflictError):
        await generator.apply_advance_to_payroll(advance.id, payroll.id)


@pytest.mark.asyncio
async def test_apply_advance_of_other_worker_rejected(db, worker, contract):
    other = await make_worker(db)
    generator = PayrollGenerator(db)
    payroll = await generator.generate(worker.id, *JAN)
    advance = await approved_advance(db, other, 10000, monthly=5000)

    with pytest.raises(BusinessRuleError):
        await generator.apply_advance_to_payroll(advance.id, payroll.id)


@pytest.mark.asyncio
async def test_list_filters_and_paginates(db, worker, contract):
    other = await make_worker(db)
    await make_contract(db, other)
    generator = PayrollGenerator(db)
    jan = await generator.generate(worker.id, *JAN)
    await generator.generate(worker.id, *FEB)
    await generator.generate(other.id, *JAN)
    await generator.mark_as_paid(jan.id)

    assert (await generator.list(worker_id=worker.id)).total == 2
    assert (await generator.list(month=1, year=2025)).total == 2
    assert [p.id for p in (await generator.list(paid=True)).items] == [jan.id]

    page = await generator.list(page=2, limit=2)
    assert page.total == 3
    assert len(page.items) == 1
