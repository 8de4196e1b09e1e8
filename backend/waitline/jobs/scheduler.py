"""
Notification timer runner using APScheduler.

SchedulerManager is the production TimerBackend: each notification timer is a
one-shot DateTrigger job on an AsyncIOScheduler, so callbacks run as
coroutines on the application's event loop, never on separate threads.

Usage:
    scheduler = SchedulerManager()
    scheduler.start()          # inside a running event loop

    handle = scheduler.schedule(600, send_almost_ready, name="first")
    scheduler.cancel(handle)

    scheduler.shutdown(wait=False)
"""
import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.jobstores.base import JobLookupError

from waitline.jobs.timers import TimerBackend, TimerCallback, TimerHandle

logger = logging.getLogger(__name__)


class SchedulerManager(TimerBackend):
    """
    APScheduler-backed timer backend with lifecycle management.
    """

    def __init__(self, timezone_name: str = "UTC"):
        """Initialize scheduler manager."""
        self.scheduler = AsyncIOScheduler(
            timezone=timezone_name,
            job_defaults={
                'coalesce': True,  # Combine missed runs
                'max_instances': 1,  # Only one instance per job
                'misfire_grace_time': None,  # Late one-shot timers still fire
            }
        )

        # Add event listeners
        self.scheduler.add_listener(
            self._on_job_executed,
            EVENT_JOB_EXECUTED
        )
        self.scheduler.add_listener(
            self._on_job_error,
            EVENT_JOB_ERROR
        )
        self.scheduler.add_listener(
            self._on_job_missed,
            EVENT_JOB_MISSED
        )

        logger.info("SchedulerManager initialized")

    def _on_job_executed(self, event):
        """Handle job execution event."""
        logger.debug(f"Timer {event.job_id} executed")

    def _on_job_error(self, event):
        """Handle job error event."""
        logger.error(
            f"Timer {event.job_id} raised {event.exception.__class__.__name__}: "
            f"{event.exception}",
            exc_info=event.exception
        )

    def _on_job_missed(self, event):
        """Handle missed job event."""
        logger.warning(f"Timer {event.job_id} missed its run time {event.scheduled_run_time}")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start the scheduler (requires a running event loop)."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Scheduler started")
        else:
            logger.warning("Scheduler already running")

    def shutdown(self, wait: bool = True) -> None:
        """
        Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to finish
        """
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Scheduler shutdown")
        else:
            logger.warning("Scheduler not running")

    # ===== TimerBackend =====

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def schedule(self, delay_seconds: float, callback: TimerCallback, name: str = "") -> TimerHandle:
        """
        Add a one-shot job running ``callback`` after ``delay_seconds``.

        Args:
            delay_seconds: Delay from now (clamped at 0)
            callback: Coroutine function taking no arguments
            name: Label used as job name and id prefix
        """
        run_date = self.now() + timedelta(seconds=max(0.0, delay_seconds))
        job_id = f"{name or 'timer'}-{uuid4().hex}"

        self.scheduler.add_job(
            callback,
            trigger=DateTrigger(run_date=run_date),
            id=job_id,
            name=name or job_id,
        )

        logger.debug(f"Scheduled timer {job_id} for {run_date.isoformat()}")
        return TimerHandle(id=job_id, fire_at=run_date, name=name)

    def cancel(self, handle: TimerHandle) -> None:
        """Remove a pending job; already-fired or unknown jobs are ignored."""
        try:
            self.scheduler.remove_job(handle.id)
        except JobLookupError:
            pass

    def pending_count(self) -> int:
        return len(self.scheduler.get_jobs())

    def get_jobs(self) -> list:
        """Get list of scheduled jobs."""
        return self.scheduler.get_jobs()
