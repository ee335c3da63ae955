"""
APScheduler Configuration for the Reconciliation Sweep

Periodically re-queries orders stuck in PENDING (callback lost, customer
closed the payment page) so they reach a terminal status.
"""
import logging
from typing import Awaitable, Callable, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.executors.asyncio import AsyncIOExecutor

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "reconciliation_sweep"


class ReconciliationScheduler:
    """
    Wraps an AsyncIOScheduler running the stale-PENDING sweep.

    Configuration:
    - In-memory job store (the job is re-registered on every startup)
    - AsyncIOExecutor so the sweep runs on the application event loop
    - Coalesce: True (skip missed runs)
    - Max instances: 1 (a slow sweep never overlaps the next)
    """

    def __init__(self, sweep_func: Callable[[], Awaitable[object]], interval_minutes: float):
        self._sweep_func = sweep_func
        self._interval_minutes = interval_minutes
        self._scheduler = AsyncIOScheduler(
            executors={'default': AsyncIOExecutor()},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': 60
            },
            timezone='UTC'
        )

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """
        Register the sweep job and start the scheduler.

        Must be called with a running event loop (FastAPI lifespan).
        """
        if self._scheduler.running:
            logger.warning("Scheduler already running")
            return

        self._scheduler.add_job(
            self._sweep_func,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=SWEEP_JOB_ID,
            name="Reconcile stale PENDING transactions",
            replace_existing=True
        )
        self._scheduler.start()

        next_run = self._scheduler.get_job(SWEEP_JOB_ID).next_run_time
        logger.info(f"Reconciliation sweep scheduled every {self._interval_minutes}min, next_run={next_run}")

    def shutdown(self, wait: bool = True) -> None:
        """
        Shutdown the scheduler gracefully.

        Args:
            wait: Wait for a running sweep to complete before shutdown
        """
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info(f"Scheduler shutdown (wait={wait})")

    def get_job(self, job_id: str = SWEEP_JOB_ID) -> Optional[object]:
        """APScheduler Job object or None if not scheduled."""
        return self._scheduler.get_job(job_id)
