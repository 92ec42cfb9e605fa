"""
Tests for the Saga runner: ordered steps, reverse compensation, escalation.
"""
import pytest

from staffpay.core.errors import PersistenceError
from staffpay.services.saga import Saga


def recorder(calls, name, fail=False):
    async def step():
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} failed")
        return name
    return step


@pytest.mark.asyncio
async def test_runs_steps_in_order(db):
    calls = []
    saga = Saga(db, "test")
    saga.step("a", recorder(calls, "a"), recorder(calls, "undo a"))
    saga.step("b", recorder(calls, "b"), recorder(calls, "undo b"))

    results = await saga.run()

    assert calls == ["a", "b"]
    assert results == {"a": "a", "b": "b"}


@pytest.mark.asyncio
async def test_failure_compensates_completed_steps_in_reverse(db):
    calls = []
    saga = Saga(db, "test")
    saga.step("a", recorder(calls, "a"), recorder(calls, "undo a"))
    saga.step("b", recorder(calls, "b"), recorder(calls, "undo b"))
    saga.step("c", recorder(calls, "c", fail=True), recorder(calls, "undo c"))
    saga.step("d", recorder(calls, "d"), recorder(calls, "undo d"))

    with pytest.raises(RuntimeError, match="c failed"):
        await saga.run()

    assert calls == ["a", "b", "c", "undo b", "undo a"]


@pytest.mark.asyncio
async def test_steps_without_compensation_are_skipped_on_rollback(db):
    calls = []
    saga = Saga(db, "test")
    saga.step("a", recorder(calls, "a"), recorder(calls, "undo a"))
    saga.step("check", recorder(calls, "check"))
    saga.step("b", recorder(calls, "b", fail=True))

    with pytest.raises(RuntimeError):
        await saga.run()

    assert calls == ["a", "check", "b", "undo a"]


@pytest.mark.asyncio
async def test_failed_compensation_escalates_with_context(db):
    calls = []
    saga = Saga(db, "test", context={"payroll_id": "p-1"})
    saga.step("a", recorder(calls, "a"), recorder(calls, "undo a", fail=True))
    saga.step("b", recorder(calls, "b", fail=True))

    with pytest.raises(PersistenceError) as exc_info:
        await saga.run()

    context = exc_info.value.context
    assert context["payroll_id"] == "p-1"
    assert context["failed_step"] == "b"
    assert context["compensation_step"] == "a"
    assert "undo a failed" in context["compensation_error"]
    assert exc_info.value.status_code == 500


@pytest.mark.asyncio
async def test_steps_added_while_running_are_executed(db):
    calls = []
    saga = Saga(db, "test")

    async def plan():
        calls.append("plan")
        saga.step("late", recorder(calls, "late"))

    saga.step("plan", plan)
    await saga.run()

    assert calls == ["plan", "late"]
