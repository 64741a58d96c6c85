"""APScheduler wrapper for background gateway jobs.

Runs two kinds of jobs on the application's event loop:

- a retry drain that re-executes queued operations whose backoff elapsed
- optional periodic synchronization per provider (interval or cron)
"""

from __future__ import annotations

import logging
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..config import RETRY_DRAIN_INTERVAL_SECONDS
from ..errors import InsuranceError
from ..models import DataType
from ..registry import ProviderRegistry

logger = logging.getLogger(__name__)

RETRY_DRAIN_JOB_ID = "retry-drain"


def sync_job_id(provider_id: str) -> str:
    return f"sync:{provider_id}"


class GatewayScheduler:
    """Scheduler for retry draining and periodic provider syncs.

    Must be started from within a running asyncio event loop.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        drain_interval: float = RETRY_DRAIN_INTERVAL_SECONDS,
    ) -> None:
        """Initialize the scheduler.

        Args:
            registry: Registry whose providers are drained and synced
            drain_interval: Seconds between retry drains
        """
        self.registry = registry
        self.drain_interval = drain_interval
        self._scheduler: AsyncIOScheduler | None = None
        self._started = False

    def _create_scheduler(self) -> AsyncIOScheduler:
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Only one instance per job
            "misfire_grace_time": 60,
        }
        return AsyncIOScheduler(job_defaults=job_defaults, timezone="UTC")

    def start(self) -> None:
        """Start the scheduler and the retry drain job."""
        if self._started:
            logger.warning("Scheduler already started")
            return

        self._scheduler = self._create_scheduler()
        self._scheduler.add_job(
            self.registry.drain_due_retries,
            trigger=IntervalTrigger(seconds=self.drain_interval),
            id=RETRY_DRAIN_JOB_ID,
            name="Drain due retries",
            replace_existing=True,
        )
        self._scheduler.start()
        self._started = True
        logger.info(f"Scheduler started, draining retries every {self.drain_interval}s")

    def shutdown(self, wait: bool = False) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Scheduler shutdown")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None

    def schedule_periodic_sync(
        self,
        provider_id: str,
        data_types: list[DataType] | None = None,
        interval_seconds: float | None = None,
        cron_expression: str | None = None,
    ) -> str:
        """Schedule a recurring sync for a provider.

        Args:
            provider_id: Registered provider to sync
            data_types: Entity types to request (default: all)
            interval_seconds: Fixed interval between syncs
            cron_expression: Cron schedule, used when no interval is given

        Returns:
            Job ID

        Raises:
            ProviderNotFound: If the provider is not registered
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not started")

        self.registry.get_context(provider_id)

        if interval_seconds is not None:
            trigger: Any = IntervalTrigger(seconds=interval_seconds)
        elif cron_expression:
            trigger = self._parse_cron(cron_expression)
        else:
            raise ValueError("interval_seconds or cron_expression is required")

        job_id = sync_job_id(provider_id)
        self._scheduler.add_job(
            self._run_sync,
            trigger=trigger,
            id=job_id,
            name=f"Sync {provider_id}",
            args=(provider_id, data_types),
            replace_existing=True,
        )
        logger.info(f"Added scheduled job: {job_id} with trigger: {trigger}")
        return job_id

    def cancel_job(self, job_id: str) -> bool:
        """Remove a scheduled job.

        Returns:
            True if job was removed, False if not found
        """
        if not self._scheduler:
            return False

        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.info(f"Removed scheduled job: {job_id}")
        return True

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        if not self._scheduler:
            return None

        job = self._scheduler.get_job(job_id)
        if not job:
            return None

        next_run = getattr(job, "next_run_time", None)
        return {
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run.isoformat() if next_run else None,
            "trigger": str(job.trigger),
        }

    def get_jobs(self) -> list[dict[str, Any]]:
        if not self._scheduler:
            return []
        return [self.get_job(job.id) for job in self._scheduler.get_jobs()]

    async def _run_sync(self, provider_id: str, data_types: list[DataType] | None) -> None:
        try:
            await self.registry.synchronize_data(provider_id, data_types)
        except InsuranceError as e:
            logger.warning(f"Scheduled sync for {provider_id} failed: {e}")

    def _parse_cron(self, cron_expression: str) -> CronTrigger:
        """Parse a 5-field cron expression (minute hour day month day_of_week)."""
        parts = cron_expression.strip().split()
        if len(parts) != 5:
            raise ValueError(
                f"Invalid cron expression: {cron_expression}. "
                "Expected 5 space-separated fields."
            )
        return CronTrigger(
            minute=parts[0],
            hour=parts[1],
            day=parts[2],
            month=parts[3],
            day_of_week=parts[4],
            timezone="UTC",
        )
