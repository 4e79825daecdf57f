import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.utils.datetime import utc_now

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Thin wrapper around APScheduler's AsyncIOScheduler.

    Interval jobs never overlap (max_instances=1) and missed runs collapse into
    one, so a slow bank does not pile up sync passes.
    """

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._started = False

    def start(self) -> None:
        if self._started:
            return
        self.scheduler.start()
        self._started = True
        logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        if not self._started:
            return
        self.scheduler.shutdown(wait=wait)
        self._started = False
        logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        minutes: int,
        run_immediately: bool = False,
    ) -> None:
        """
        Register (or replace) an interval job.

        Args:
            func: Coroutine function to run
            job_id: Unique identifier for the job
            minutes: Interval in minutes, must be positive
            run_immediately: First run right away instead of after one interval
        """
        if minutes <= 0:
            raise ValueError("Interval must be at least one minute")

        now = utc_now()
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=now if run_immediately else now + timedelta(minutes=minutes),
        )
        logger.info(f"Scheduled job '{job_id}' every {minutes} minute(s)")

    def next_run_at(self, job_id: str) -> Optional[datetime]:
        job = self.scheduler.get_job(job_id)
        return job.next_run_time if job else None
