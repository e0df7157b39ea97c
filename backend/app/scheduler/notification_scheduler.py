"""
Periodic notification jobs on APScheduler's AsyncIOScheduler (runs on the app's event loop).

Every job opens its own DB session, builds a QueueManager and closes the session when done.
A job that raises is logged and swallowed: the other jobs and the process keep running.
Plain (sync) jobs run in a worker thread. Async jobs run on the loop and their store calls
are sync SQLAlchemy, so a long drain delays other requests; batch_size bounds it.

Jobs:
- queue drain every QUEUE_DRAIN_INTERVAL_SECONDS -> QueueManager.process_queue
- deadline sweep hourly -> TASK_DEADLINE_APPROACHING for tasks due soon
- overdue sweep daily at OVERDUE_SWEEP_HOUR -> mark overdue + TASK_OVERDUE
- retention cleanup weekly -> delete old terminal notifications
- insights weekly -> one INSIGHT per recently active user
"""
import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.orm import Session

from app.core.constants import (
    DEADLINE_SWEEP_INTERVAL_HOURS,
    DEADLINE_SWEEP_JOB_ID,
    OVERDUE_SWEEP_CRON,
    OVERDUE_SWEEP_JOB_ID,
    QUEUE_DRAIN_INTERVAL_SECONDS,
    QUEUE_DRAIN_JOB_ID,
    RETENTION_CLEANUP_CRON,
    RETENTION_CLEANUP_JOB_ID,
    WEEKLY_INSIGHTS_CRON,
    WEEKLY_INSIGHTS_JOB_ID,
)
from app.db.session import SessionLocal
from app.services.notifications.queue import QueueManager, build_queue_manager
from app.services.notifications.sweeps import (
    run_deadline_sweep,
    run_overdue_sweep,
    run_retention_cleanup,
    run_weekly_insights,
)

logger = logging.getLogger(__name__)

# Shared job options: a slow run is never stacked on top of itself
_JOB_DEFAULTS = {"max_instances": 1, "coalesce": True, "misfire_grace_time": 60}


class NotificationScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        manager_factory: Callable[[Session], QueueManager] = build_queue_manager,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self._session_factory = session_factory
        self._manager_factory = manager_factory
        self._scheduler = scheduler
        self._owns_scheduler = scheduler is None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Register all jobs and start ticking. Must be called with an event loop running."""
        if self.running:
            logger.info("Notification scheduler already running")
            return
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone="UTC")
        s = self._scheduler
        s.add_job(
            self.drain_queue,
            "interval",
            seconds=QUEUE_DRAIN_INTERVAL_SECONDS,
            id=QUEUE_DRAIN_JOB_ID,
            replace_existing=True,
            **_JOB_DEFAULTS,
        )
        s.add_job(
            self.deadline_sweep,
            "interval",
            hours=DEADLINE_SWEEP_INTERVAL_HOURS,
            id=DEADLINE_SWEEP_JOB_ID,
            replace_existing=True,
            **_JOB_DEFAULTS,
        )
        s.add_job(
            self.overdue_sweep,
            "cron",
            id=OVERDUE_SWEEP_JOB_ID,
            replace_existing=True,
            **OVERDUE_SWEEP_CRON,
            **_JOB_DEFAULTS,
        )
        s.add_job(
            self.retention_cleanup,
            "cron",
            id=RETENTION_CLEANUP_JOB_ID,
            replace_existing=True,
            **RETENTION_CLEANUP_CRON,
            **_JOB_DEFAULTS,
        )
        s.add_job(
            self.weekly_insights,
            "cron",
            id=WEEKLY_INSIGHTS_JOB_ID,
            replace_existing=True,
            **WEEKLY_INSIGHTS_CRON,
            **_JOB_DEFAULTS,
        )
        s.start()
        logger.info("Notification scheduler started: %s", [j.id for j in s.get_jobs()])

    def stop(self) -> None:
        """Remove every job and shut the scheduler down. Safe to call when not running."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)
            logger.info("Notification scheduler stopped")
        if self._owns_scheduler:
            self._scheduler = None

    def status(self) -> dict[str, Any]:
        jobs = []
        if self.running:
            for job in self._scheduler.get_jobs():
                next_run = getattr(job, "next_run_time", None)
                jobs.append({"id": job.id, "next_run_time": next_run.isoformat() if next_run else None})
        return {"running": self.running, "jobs": jobs}

    # -------------------------
    # Jobs
    # -------------------------

    async def _run(self, job_id: str, action: Callable[[QueueManager], Any]) -> Any:
        db = self._session_factory()
        try:
            manager = self._manager_factory(db)
            if inspect.iscoroutinefunction(action):
                return await action(manager)
            # plain jobs are pure DB work: keep them off the event loop
            return await asyncio.to_thread(action, manager)
        except Exception:
            logger.exception("Scheduler job %s failed", job_id)
            return None
        finally:
            db.close()

    async def drain_queue(self) -> Any:
        return await self._run(QUEUE_DRAIN_JOB_ID, QueueManager.process_queue)

    async def deadline_sweep(self) -> Any:
        return await self._run(DEADLINE_SWEEP_JOB_ID, run_deadline_sweep)

    async def overdue_sweep(self) -> Any:
        return await self._run(OVERDUE_SWEEP_JOB_ID, run_overdue_sweep)

    async def retention_cleanup(self) -> Any:
        return await self._run(RETENTION_CLEANUP_JOB_ID, run_retention_cleanup)

    async def weekly_insights(self) -> Any:
        return await self._run(WEEKLY_INSIGHTS_JOB_ID, run_weekly_insights)
