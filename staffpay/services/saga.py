"""
Saga runner for compound operations.

There is no multi-record transaction: every step commits its own record. When a step
fails, the session is rolled back and the compensations of the completed steps run in
reverse order. A failing compensation leaves money in an inconsistent state, so it is
escalated as PersistenceError with the saga context for manual reconciliation.
"""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from staffpay.core.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Awaitable[Any]]
    compensation: Callable[[], Awaitable[Any]] | None = None


class Saga:

    def __init__(self, db: AsyncSession, name: str, context: dict[str, Any] | None = None):
        self.db = db
        self.name = name
        self.context = dict(context or {})
        self.steps: list[SagaStep] = []

    def step(
        self,
        name: str,
        action: Callable[[], Awaitable[Any]],
        compensation: Callable[[], Awaitable[Any]] | None = None,
    ) -> "Saga":
        """Appends a step. Steps may be appended while the saga runs."""
        self.steps.append(SagaStep(name, action, compensation))
        return self

    async def run(self) -> dict[str, Any]:
        completed: list[SagaStep] = []
        results: dict[str, Any] = {}
        i = 0
        while i < len(self.steps):
            step = self.steps[i]
            try:
                results[step.name] = await step.action()
            except Exception as exc:
                await self.db.rollback()
                logger.warning(
                    "saga %s: step %s failed (%s), compensating %d step(s)",
                    self.name, step.name, exc, len(completed),
                )
                await self._compensate(completed, step, exc)
                raise
            completed.append(step)
            i += 1
        return results

    async def _compensate(self, completed: list[SagaStep], failed: SagaStep, cause: Exception) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                await step.compensation()
            except Exception as comp_exc:
                await self.db.rollback()
                context = {
                    **self.context,
                    "saga": self.name,
                    "failed_step": failed.name,
                    "cause": str(cause),
                    "compensation_step": step.name,
                    "compensation_error": str(comp_exc),
                }
                logger.error("saga %s: compensation %s failed, manual reconciliation needed: %s",
                             self.name, step.name, context)
                raise PersistenceError(
                    f"Rollback of '{self.name}' failed at step '{step.name}'", context=context
                ) from comp_exc
