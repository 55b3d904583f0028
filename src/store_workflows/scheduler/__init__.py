"""APScheduler-based scheduling for cron and polling triggers."""

from .scheduler import TaskScheduler, build_cron_trigger

__all__ = ["TaskScheduler", "build_cron_trigger"]
