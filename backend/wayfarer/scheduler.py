"""
APScheduler setup for the date-based status sweep.

The scheduler is an explicit object owned by the application context:
nothing starts on import. The entry point calls start() once at boot and
shutdown() on exit.
"""

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.memory import MemoryJobStore
from sqlalchemy.orm import Session

from wayfarer.config import Settings
from wayfarer.services.trip_status import SweepResult, TripStatusService

logger = logging.getLogger(__name__)

STATUS_SWEEP_JOB_ID = "status_transitions"


@dataclass
class JobRunResult:
    job_name: str
    success: bool
    started_at: datetime
    execution_time: float = 0.0
    skipped: bool = False
    result: Optional[dict] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "job_name": self.job_name,
            "success": self.success,
            "skipped": self.skipped,
            "started_at": self.started_at.isoformat(),
            "execution_time": round(self.execution_time, 3),
            "result": self.result,
            "error": self.error,
        }


@dataclass
class _SweepRun:
    stop_event: threading.Event = field(default_factory=threading.Event)


class StatusSweepScheduler:
    """
    Runs TripStatusService.run_date_based_sweep on a fixed interval.

    Overlapping runs are prevented by an in-memory guard (single scheduler
    process assumed). A run that exceeds ``timeout`` is abandoned: the
    worker thread is told to stop between trips and the guard is released.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval_minutes: int = 30,
        timeout: float = 300.0,
        timezone: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.interval_minutes = interval_minutes
        self.timeout = timeout
        self.timezone = timezone or os.environ.get("TZ", "UTC")

        self._scheduler: Optional[AsyncIOScheduler] = None
        self._current: Optional[_SweepRun] = None
        self.last_result: Optional[JobRunResult] = None

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: Callable[[], Session]) -> "StatusSweepScheduler":
        return cls(
            session_factory,
            interval_minutes=settings.status_sweep_interval_minutes,
            timeout=settings.status_sweep_timeout_seconds,
        )

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def in_flight(self) -> bool:
        return self._current is not None

    def start(self) -> None:
        """Start the interval job; the first sweep fires immediately."""
        if self.running:
            logger.warning("Status sweep scheduler already running")
            return

        logger.info(f"Scheduler using timezone: {self.timezone}")
        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            timezone=self.timezone,
        )
        self._scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=STATUS_SWEEP_JOB_ID,
            name=f"Trip Status Sweep (every {self.interval_minutes} min)",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(self._scheduler.timezone),
        )
        self._scheduler.start()
        logger.info("✅ Status sweep scheduler started")

        for job in self._scheduler.get_jobs():
            logger.info(f"Next '{job.name}': {job.next_run_time}")

    def shutdown(self) -> None:
        """Cancel the timer; an in-flight sweep finishes or hits its timeout."""
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.remove_all_jobs()
            self._scheduler.shutdown(wait=False)
            logger.info("🛑 Status sweep scheduler stopped")
        self._scheduler = None

    def _sweep(self, run: _SweepRun, now: Optional[datetime]) -> SweepResult:
        db = self.session_factory()
        try:
            service = TripStatusService(db)
            return service.run_date_based_sweep(now=now, should_stop=run.stop_event.is_set)
        finally:
            db.close()

    async def run_once(self, now: Optional[datetime] = None) -> JobRunResult:
        """Run one guarded sweep. Never raises."""
        started_at = datetime.utcnow()

        if self._current is not None:
            logger.warning(f"Skipping '{STATUS_SWEEP_JOB_ID}': previous run still in progress")
            return JobRunResult(
                job_name=STATUS_SWEEP_JOB_ID,
                success=False,
                started_at=started_at,
                skipped=True,
                error="previous run still in progress",
            )

        run = _SweepRun()
        self._current = run
        start = time.monotonic()
        logger.info(f"🔄 Executing job '{STATUS_SWEEP_JOB_ID}'...")

        try:
            sweep = await asyncio.wait_for(
                asyncio.to_thread(self._sweep, run, now),
                timeout=self.timeout,
            )
            outcome = JobRunResult(
                job_name=STATUS_SWEEP_JOB_ID,
                success=True,
                started_at=started_at,
                execution_time=time.monotonic() - start,
                result=_summarize(sweep),
            )
            logger.info(f"✅ Job '{STATUS_SWEEP_JOB_ID}' completed in {outcome.execution_time:.2f}s: {outcome.result}")
            if sweep.errors:
                logger.warning(f"⚠️ Status transition errors: {[f'{e.trip_id}: {e.message}' for e in sweep.errors]}")
        except asyncio.TimeoutError:
            run.stop_event.set()
            outcome = JobRunResult(
                job_name=STATUS_SWEEP_JOB_ID,
                success=False,
                started_at=started_at,
                execution_time=time.monotonic() - start,
                error=f"Job execution timeout after {self.timeout:.0f}s",
            )
            logger.error(f"❌ Job '{STATUS_SWEEP_JOB_ID}' abandoned: {outcome.error}")
        except Exception as e:
            outcome = JobRunResult(
                job_name=STATUS_SWEEP_JOB_ID,
                success=False,
                started_at=started_at,
                execution_time=time.monotonic() - start,
                error=str(e),
            )
            logger.error(f"❌ Job '{STATUS_SWEEP_JOB_ID}' failed after {outcome.execution_time:.2f}s: {e}")
        finally:
            self._current = None

        self.last_result = outcome
        return outcome

    def get_status(self) -> dict[str, Any]:
        """Scheduler status for the health endpoint."""
        jobs = []
        if self.running:
            for job in self._scheduler.get_jobs():
                jobs.append({
                    "id": job.id,
                    "name": job.name,
                    "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
                })

        return {
            "running": self.running,
            "in_flight": self.in_flight,
            "interval_minutes": self.interval_minutes,
            "timeout_seconds": self.timeout,
            "jobs": jobs,
            "last_run": self.last_result.to_dict() if self.last_result else None,
        }


def _summarize(sweep: SweepResult) -> dict:
    summary = sweep.summary()
    summary["details"] = [
        {
            "trip_id": t.trip_id,
            "old_status": t.old_status.value if t.old_status else None,
            "new_status": t.new_status.value,
            "reason": t.reason,
        }
        for t in sweep.transitions
    ]
    summary["error_details"] = [{"trip_id": e.trip_id, "error": e.message} for e in sweep.errors]
    return summary
