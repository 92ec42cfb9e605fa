"""
Celery tasks that finish work a request could not complete: pending sursalaire
credits and repayments left behind by an interrupted payroll deletion.
"""
import logging

from staffpay.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="staffpay.tasks.reconciliation_tasks.credit_pending_sursalaires")
def credit_pending_sursalaires():
    import asyncio
    return asyncio.run(_credit_pending())


@celery_app.task(name="staffpay.tasks.reconciliation_tasks.release_orphaned_repayments")
def release_orphaned_repayments():
    import asyncio
    return asyncio.run(_release_orphans())


async def _credit_pending(session_factory=None) -> dict:
    from staffpay.core.database import AsyncSessionLocal
    from staffpay.services.sursalaire_aggregator import SursalaireAggregator

    async with (session_factory or AsyncSessionLocal)() as db:
        summary = await SursalaireAggregator(db).credit_pending()
    logger.info("pending sursalaires: %s", summary)
    return summary


async def _release_orphans(session_factory=None) -> int:
    from staffpay.core.database import AsyncSessionLocal
    from staffpay.services.advance_ledger import AdvanceLedger

    async with (session_factory or AsyncSessionLocal)() as db:
        released = await AdvanceLedger(db).release_orphaned_repayments()
    if released:
        logger.warning("released %d orphaned repayment(s)", released)
    return released
