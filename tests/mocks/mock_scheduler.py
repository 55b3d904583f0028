"""Mock scheduler for testing."""

from collections.abc import Callable
from typing import Any


class MockJob:
    """Mock APScheduler job."""

    def __init__(self, job_id: str, func: Callable, trigger: Any, **kwargs):
        self.id = job_id
        self.func = func
        self.trigger = trigger
        self.kwargs = kwargs
        self.next_run_time = None

    def __repr__(self):
        return f"MockJob(id={self.id})"


class MockScheduler:
    """Stand-in for TaskScheduler that runs jobs only when told to."""

    def __init__(self, enabled: bool = True):
        self.jobs: dict[str, MockJob] = {}
        self.running = False
        self.started = False
        self.config = type("Config", (), {"enabled": enabled})()

    def add_job(
        self,
        func: Callable,
        trigger: str = "interval",
        job_id: str | None = None,
        replace_existing: bool = True,
        **trigger_args,
    ) -> str:
        """Add a job and return its id, like TaskScheduler.add_job."""
        if job_id is None:
            job_id = f"job_{len(self.jobs)}"
        if job_id in self.jobs and not replace_existing:
            raise ValueError(f"Job already exists: {job_id}")

        self.jobs[job_id] = MockJob(job_id, func, trigger, **trigger_args)
        return job_id

    def remove_job(self, job_id: str) -> None:
        """Remove a job from the scheduler."""
        if job_id in self.jobs:
            del self.jobs[job_id]

    def get_job(self, job_id: str) -> MockJob | None:
        """Get a job by ID."""
        return self.jobs.get(job_id)

    def get_jobs(self) -> list[MockJob]:
        """Get all jobs."""
        return list(self.jobs.values())

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self) -> None:
        """Start the scheduler."""
        self.running = True
        self.started = True

    def shutdown(self, wait: bool = True) -> None:
        """Shutdown the scheduler."""
        self.running = False

    def execute_job(self, job_id: str) -> Any:
        """Manually execute a job."""
        if job_id in self.jobs:
            return self.jobs[job_id].func()
        return None

    def execute_all(self) -> None:
        """Run every registered job once."""
        for job in list(self.jobs.values()):
            job.func()

    def clear(self) -> None:
        """Clear all jobs."""
        self.jobs.clear()
