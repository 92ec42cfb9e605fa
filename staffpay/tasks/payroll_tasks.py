"""
Celery tasks for automatic payroll generation.
"""
import logging

from staffpay.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="staffpay.tasks.payroll_tasks.create_monthly_payrolls")
def create_monthly_payrolls():
    """Generates last month's payroll for every active worker."""
    import asyncio
    return asyncio.run(_create_payrolls())


async def _create_payrolls(today=None, session_factory=None) -> dict:
    from datetime import date
    from dateutil.relativedelta import relativedelta
    from sqlalchemy import select
    from staffpay.core.database import AsyncSessionLocal
    from staffpay.core.errors import StaffpayError
    from staffpay.models.worker import Worker
    from staffpay.services.payroll_generator import PayrollGenerator

    today = today or date.today()
    period_start = today.replace(day=1) - relativedelta(months=1)
    period_end = period_start + relativedelta(months=1, days=-1)
    session_factory = session_factory or AsyncSessionLocal

    summary = {"created": 0, "skipped": 0, "failed": 0}
    async with session_factory() as db:
        result = await db.execute(select(Worker.id).where(Worker.is_active.is_(True)))
        worker_ids = list(result.scalars().all())

        generator = PayrollGenerator(db)
        for worker_id in worker_ids:
            # Only when the period is still free
            if await generator.guard.find_conflicting(worker_id, period_start, period_end):
                summary["skipped"] += 1
                continue
            try:
                await generator.generate(worker_id, period_start, period_end)
                summary["created"] += 1
            except StaffpayError as exc:
                summary["failed"] += 1
                logger.warning("payroll for worker %s (%s to %s) not generated: %s",
                               worker_id, period_start, period_end, exc.message)

    logger.info("monthly payroll run for %s: %s", period_start.strftime("%Y-%m"), summary)
    return summary
