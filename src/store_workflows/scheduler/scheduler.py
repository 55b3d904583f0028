"""Task scheduler backing time-based and threshold triggers.

This module wraps APScheduler to provide:
- Cron jobs evaluated in a per-job timezone
- Interval jobs for metric polling
- Logging of job outcomes
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..core.config import SchedulerConfig
from ..core.logger import get_logger

logger = get_logger("scheduler")


def build_cron_trigger(expression: str, timezone: str) -> CronTrigger:
    """Parse a five-field cron expression.

    Raises:
        ValueError: If the expression or timezone is invalid
    """
    if len(expression.split()) != 5:
        raise ValueError(f"Cron expression must have 5 fields: {expression!r}")
    try:
        return CronTrigger.from_crontab(expression, timezone=timezone)
    except (ValueError, LookupError) as exc:
        raise ValueError(f"Invalid cron expression {expression!r}: {exc}") from exc


class TaskScheduler:
    """Thin wrapper around APScheduler's BackgroundScheduler.

    Example:
        ```python
        scheduler = TaskScheduler(SchedulerConfig())
        scheduler.start()
        scheduler.add_job(poll, trigger="interval", job_id="poll", seconds=60)
        scheduler.add_job(report, trigger="cron", crontab="0 8 * * *", timezone="UTC")
        ```
    """

    def __init__(self, config: SchedulerConfig):
        """Initialize the task scheduler.

        Args:
            config: Scheduler configuration
        """
        self.config = config
        self._scheduler: BackgroundScheduler | None = None
        self._setup_scheduler()

    def _setup_scheduler(self) -> None:
        executors = {"default": ThreadPoolExecutor(max_workers=self.config.max_workers)}
        job_defaults = {
            "coalesce": self.config.job_coalesce,
            "max_instances": self.config.max_instances,
            "misfire_grace_time": self.config.misfire_grace_time,
        }

        self._scheduler = BackgroundScheduler(
            jobstores={"default": MemoryJobStore()},
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.config.timezone,
        )
        self._scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)

        logger.info("Scheduler initialized with timezone: %s", self.config.timezone)

    def _job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug("Job %s executed", event.job_id)

    def _job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            "Job %s failed with exception: %s",
            event.job_id,
            event.exception,
            exc_info=event.exception,
        )

    @property
    def is_running(self) -> bool:
        return bool(self._scheduler and self._scheduler.running)

    def start(self) -> None:
        """Start the scheduler.

        Raises:
            RuntimeError: If scheduler is not enabled in config
        """
        if not self.config.enabled:
            raise RuntimeError("Scheduler is disabled in configuration")

        if self._scheduler and not self._scheduler.running:
            self._scheduler.start()
            logger.info("Scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler.

        Args:
            wait: Whether to wait for running jobs to complete
        """
        if self._scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Scheduler stopped")

    def add_job(
        self,
        func: Callable,
        trigger: str = "interval",
        job_id: str | None = None,
        replace_existing: bool = True,
        **trigger_args: Any,
    ) -> str:
        """Add a job to the scheduler.

        Args:
            func: Function to execute
            trigger: Trigger type ('interval' or 'cron')
            job_id: Unique job ID (auto-generated if None)
            replace_existing: Whether to replace existing job with same ID
            **trigger_args: Trigger-specific arguments. Cron jobs accept either
                ``crontab`` (a five-field expression) or individual fields, and
                an optional ``timezone`` overriding the configured one.

        Returns:
            Job ID

        Raises:
            ValueError: If the trigger type or its arguments are invalid
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not initialized")

        if job_id is None:
            job_id = f"{func.__module__}.{func.__name__}-{uuid.uuid4().hex}"

        trigger_obj: Any = None
        if trigger == "interval":
            trigger_obj = IntervalTrigger(**trigger_args)
        elif trigger == "cron":
            timezone = trigger_args.pop("timezone", None) or self.config.timezone
            crontab = trigger_args.pop("crontab", None)
            if crontab:
                trigger_obj = build_cron_trigger(crontab, timezone)
            else:
                trigger_obj = CronTrigger(**trigger_args, timezone=timezone)
        else:
            raise ValueError(f"Unsupported trigger type: {trigger}")

        self._scheduler.add_job(
            func,
            trigger_obj,
            id=job_id,
            replace_existing=replace_existing,
        )

        logger.info("Job added: %s with trigger %s", job_id, trigger)
        return job_id

    def remove_job(self, job_id: str) -> None:
        """Remove a job from the scheduler.

        Args:
            job_id: Job ID to remove
        """
        if not self._scheduler:
            raise RuntimeError("Scheduler not initialized")

        self._scheduler.remove_job(job_id)
        logger.info("Job removed: %s", job_id)

    def get_job(self, job_id: str) -> Any | None:
        """Get a specific job by ID."""
        if not self._scheduler:
            return None

        return self._scheduler.get_job(job_id)

    def get_jobs(self) -> list[Any]:
        if not self._scheduler:
            return []

        return self._scheduler.get_jobs()


__all__ = ["TaskScheduler", "build_cron_trigger"]
