from celery import Celery
from celery.schedules import crontab

from staffpay.core.config import settings

celery_app = Celery(
    "staffpay",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["staffpay.tasks.payroll_tasks", "staffpay.tasks.reconciliation_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Africa/Abidjan",
    enable_utc=True,
    beat_schedule={
        # Monthly on the 1st at 06:00: payrolls for the previous month
        "monthly-payroll": {
            "task": "staffpay.tasks.payroll_tasks.create_monthly_payrolls",
            "schedule": crontab(hour=6, minute=0, day_of_month=1),
        },
        # Hourly: credit sursalaires still waiting for a beneficiary payroll
        "hourly-pending-sursalaires": {
            "task": "staffpay.tasks.reconciliation_tasks.credit_pending_sursalaires",
            "schedule": crontab(minute=15),
        },
        # Nightly at 02:30: finish interrupted payroll deletions
        "nightly-orphaned-repayments": {
            "task": "staffpay.tasks.reconciliation_tasks.release_orphaned_repayments",
            "schedule": crontab(hour=2, minute=30),
        },
    },
)
