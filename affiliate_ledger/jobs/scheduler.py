"""
APScheduler configuration for recurring ledger jobs.

Late-payment enforcement runs on a fixed interval inside the API process.
``max_instances=1`` keeps runs from overlapping within this process; the
``job_locks`` table keeps them from overlapping across processes.
"""
from __future__ import annotations

import logging
import os

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from affiliate_ledger.database import SessionLocal
from affiliate_ledger.errors import LedgerError
from affiliate_ledger.services import EnforcementService

logger = logging.getLogger(__name__)

ENFORCEMENT_INTERVAL_MINUTES = int(os.getenv("ENFORCEMENT_INTERVAL_MINUTES", "60"))

jobstores = {
    "default": MemoryJobStore(),
}

executors = {
    "default": ThreadPoolExecutor(max_workers=1),
}

job_defaults = {
    "coalesce": True,  # Combine multiple pending executions into one
    "max_instances": 1,
    "misfire_grace_time": 300,
}

scheduler = BackgroundScheduler(jobstores=jobstores, executors=executors, job_defaults=job_defaults)


def run_enforcement_job() -> None:
    """Scheduler entry point; failures are logged and retried on the next tick."""
    session = SessionLocal()
    try:
        EnforcementService(session).enforce_late_payments()
    except LedgerError as e:
        logger.warning("Scheduled enforcement skipped: %s", e.message)
    finally:
        session.close()


def start_scheduler() -> None:
    if scheduler.running:
        return
    scheduler.add_job(
        run_enforcement_job,
        "interval",
        minutes=ENFORCEMENT_INTERVAL_MINUTES,
        id="enforce_late_payments",
        name="Enforce late commission payments",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started: enforcement every %s minutes", ENFORCEMENT_INTERVAL_MINUTES)


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
