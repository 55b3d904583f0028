"""SQLite persistence for workflows, executions and store data."""

from .base import SQLiteStore
from .store_data import EXPORTABLE_TABLES, StoreDataRepository
from .workflows import WorkflowRepository

__all__ = ["EXPORTABLE_TABLES", "SQLiteStore", "StoreDataRepository", "WorkflowRepository"]
