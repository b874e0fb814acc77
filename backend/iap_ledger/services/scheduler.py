"""
APScheduler Configuration for Reconciliation

Runs the query/merge pass in the background so purchases completed outside
the app (delayed payments clearing, purchases made on another session) reach
the log without an operator query.
"""
import logging
from datetime import datetime, timezone
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor

from ..config import settings
from ..models.reports import QueryReport

logger = logging.getLogger(__name__)


RECONCILIATION_JOB_ID = "reconcile_purchases"


class ReconciliationScheduler:
    """
    Singleton scheduler for the reconciliation job.

    The job is bound to the live BillingService, so it is registered again at
    every startup and kept in memory.
    """

    _instance: Optional["ReconciliationScheduler"] = None
    _scheduler: Optional[AsyncIOScheduler] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._scheduler is None:
            self._initialize_scheduler()

    def _initialize_scheduler(self):
        """
        Configuration:
        - AsyncIOScheduler: jobs run on the application's event loop
        - Coalesce: True (one catch-up run after a stall)
        - Max instances: 1 (passes are serialized by the engine anyway)
        """
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 300
        }

        self._scheduler = AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone='UTC'
        )

        logger.info("APScheduler initialized with in-memory job store")

    def start(self):
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info(f"Scheduler started. Jobs: {len(self._scheduler.get_jobs())}")
        else:
            logger.warning("Scheduler already running")

    def shutdown(self, wait: bool = True):
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")

    def add_reconciliation_job(
        self,
        job_func,
        interval_minutes: float,
        run_now: bool = False,
        **kwargs
    ) -> str:
        """
        Register the periodic reconciliation job.

        Args:
            job_func: Async function to execute periodically
            interval_minutes: How often to run it
            run_now: Also run once immediately
            **kwargs: Arguments passed to job_func

        Returns:
            Job ID
        """
        options = {}
        if run_now:
            options['next_run_time'] = datetime.now(timezone.utc)

        self._scheduler.add_job(
            job_func,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=RECONCILIATION_JOB_ID,
            name="Reconcile purchases",
            replace_existing=True,
            kwargs=kwargs,
            **options
        )

        logger.info(f"Added reconciliation job: interval={interval_minutes}min, run_now={run_now}")
        return RECONCILIATION_JOB_ID

    def remove_job(self, job_id: str = RECONCILIATION_JOB_ID) -> bool:
        if self._scheduler.get_job(job_id) is None:
            return False
        self._scheduler.remove_job(job_id)
        logger.info(f"Removed job: {job_id}")
        return True

    def get_job(self, job_id: str = RECONCILIATION_JOB_ID):
        return self._scheduler.get_job(job_id)


# ============================================================================
# Global Scheduler Instance
# ============================================================================

scheduler = ReconciliationScheduler()


def get_reconciliation_interval_minutes() -> float:
    """
    Returns:
        Configured interval, capped at 30 seconds in demo mode
    """
    if settings.demo_mode:
        return min(settings.reconcile_interval_minutes, 0.5)
    return settings.reconcile_interval_minutes


# ============================================================================
# Job
# ============================================================================

async def run_reconciliation_job(service) -> Optional[QueryReport]:
    """
    One background query/merge pass.

    Args:
        service: BillingService of the running application

    Returns:
        Query report, or None if skipped or failed
    """
    if not service.provider.is_supported():
        logger.info("Reconciliation skipped: billing not available")
        return None

    try:
        report = await service.engine.query_purchase_data()
    except Exception as e:
        logger.error(f"Reconciliation pass failed: {e}", exc_info=True)
        return None

    if report.mutation_count:
        logger.info(
            f"Reconciliation: {len(report.inserted)} new, {len(report.updated)} cleared, "
            f"{len(report.local_candidates)} awaiting resend"
        )
    else:
        logger.debug("Reconciliation: no changes")
    return report


# ============================================================================
# Scheduler Lifecycle Functions (for FastAPI integration)
# ============================================================================

def start_scheduler(service):
    """
    Start the scheduler and register the reconciliation job.

    Should be called in FastAPI lifespan after billing is initialized.
    """
    scheduler.start()
    scheduler.add_reconciliation_job(
        run_reconciliation_job,
        interval_minutes=get_reconciliation_interval_minutes(),
        run_now=settings.reconcile_on_startup,
        service=service
    )


def shutdown_scheduler(wait: bool = True):
    scheduler.shutdown(wait=wait)
