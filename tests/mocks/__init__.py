"""Mock objects for testing."""

from .mock_scheduler import MockJob, MockScheduler

__all__ = ["MockJob", "MockScheduler"]
