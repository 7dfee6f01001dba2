"""
Engine Scheduler - in-process periodic timers for the engine workers

Every instance runs its own timers; the leases decide which instance
actually does the work on each tick.
"""
from datetime import datetime, timedelta
from typing import Optional
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None


class EngineScheduler:
    """
    Manages the periodic worker jobs of one FiscalEngine
    """

    def __init__(self, engine):
        self.engine = engine
        self.scheduler = AsyncIOScheduler()
        self.is_running = False

    def start(self):
        """Start the scheduler"""
        if self.is_running:
            return
        settings = self.engine.settings
        now = datetime.now()

        self._add_job(
            self.engine.schedule_worker.tick,
            "ofd_schedule",
            settings.SCHEDULE_INTERVAL_SECONDS,
            first_run=now,
        )
        self._add_job(
            self.engine.repair_worker.tick,
            "ofd_repair",
            settings.REPAIR_INTERVAL_SECONDS,
            first_run=now + timedelta(seconds=settings.REPAIR_FIRST_RUN_DELAY_SECONDS),
        )
        self._add_job(
            self.engine.refresh_worker.tick,
            "sales_refresh",
            settings.REFRESH_CHECK_INTERVAL_SECONDS,
        )
        self._add_job(
            self.engine.outbox_dispatcher.tick,
            "outbox",
            settings.OUTBOX_INTERVAL_SECONDS,
        )

        self.scheduler.start()
        self.is_running = True
        logger.info(f"Engine scheduler started as {self.engine.lease.instance_id}")

    def stop(self):
        """Stop the scheduler"""
        if self.is_running:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Engine scheduler stopped")

    def _add_job(self, func, job_id: str, seconds: int, first_run: Optional[datetime] = None):
        options = {}
        if first_run is not None:
            # None would add the job paused
            options["next_run_time"] = first_run
        self.scheduler.add_job(
            func=func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            name=f"Worker {job_id}",
            replace_existing=True,
            max_instances=1,  # Prevent overlapping ticks
            coalesce=True,
            **options,
        )
        logger.info(f"Scheduled worker job: {job_id} every {seconds}s")

    def get_jobs(self):
        return [
            {
                "id": job.id,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]


# ========== Global Functions ==========

def get_scheduler() -> Optional[EngineScheduler]:
    return _scheduler


def start_scheduler(engine) -> EngineScheduler:
    """Start the global scheduler for `engine`"""
    global _scheduler
    if _scheduler is None:
        _scheduler = EngineScheduler(engine)
    _scheduler.start()
    return _scheduler


def stop_scheduler():
    """Stop the global scheduler"""
    global _scheduler
    if _scheduler:
        _scheduler.stop()
        _scheduler = None
