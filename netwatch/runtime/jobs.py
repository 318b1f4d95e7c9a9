"""Periodic jobs (trigger ticks, stats summaries) on the asyncio loop."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = structlog.get_logger(__name__)


class PeriodicJobs:
    """Manages interval jobs using APScheduler."""

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    def start(self):
        """Start the job scheduler; must be called from a running event loop."""
        if self.running:
            logger.warning("Scheduler already running")
            return

        self.scheduler.start()
        self.running = True
        logger.info("Job scheduler started", jobs=list(self.jobs))

    def stop(self):
        """Stop the job scheduler."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.running = False
        logger.info("Job scheduler stopped")

    def add_interval_job(
        self,
        job_id: str,
        func: Callable,
        seconds: float,
        description: Optional[str] = None,
    ):
        """Add an interval-based job. Coroutine functions run on the event loop."""
        if job_id in self.jobs:
            logger.warning("Job already exists, replacing", job_id=job_id)
            self.remove_job(job_id)

        trigger = IntervalTrigger(seconds=max(0.01, float(seconds)))

        job = self.scheduler.add_job(
            func=func,
            trigger=trigger,
            id=job_id,
            name=description or job_id,
            max_instances=1,
            coalesce=True,
        )

        self.jobs[job_id] = {
            "job": job,
            "seconds": float(seconds),
            "description": description,
            "added_at": datetime.now(timezone.utc),
        }

        logger.info("Added interval job",
                    job_id=job_id,
                    interval_seconds=seconds,
                    description=description)

    def remove_job(self, job_id: str) -> bool:
        """Remove a scheduled job."""
        if job_id not in self.jobs:
            logger.warning("Job not found", job_id=job_id)
            return False

        try:
            self.scheduler.remove_job(job_id)
            del self.jobs[job_id]
            logger.info("Removed job", job_id=job_id)
            return True
        except Exception as e:
            logger.error("Failed to remove job", job_id=job_id, error=str(e))
            return False

    def list_jobs(self) -> List[Dict[str, Any]]:
        """List all scheduled jobs."""
        out = []
        for job_id, info in self.jobs.items():
            scheduler_job = self.scheduler.get_job(job_id)
            next_run = getattr(scheduler_job, "next_run_time", None) if scheduler_job else None
            out.append({
                "job_id": job_id,
                "interval_seconds": info["seconds"],
                "description": info.get("description"),
                "added_at": info["added_at"].isoformat(),
                "next_run": next_run.isoformat() if next_run else None,
            })
        return out
