"""SQLite storage for workflows, executions and custom templates."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from ..automation.models import (
    ExecutionStatus,
    Workflow,
    WorkflowExecution,
    utcnow,
)
from ..core.logger import get_logger
from .base import SQLiteStore

logger = get_logger("persistence.workflows")

_DEFINITION_FIELDS = {
    "id",
    "store_id",
    "name",
    "description",
    "trigger",
    "actions",
    "enabled",
    "tags",
    "created_by",
}


class WorkflowRepository(SQLiteStore):
    """Persistent storage for workflow definitions and execution history.

    Provides:
    - Workflow CRUD with statistics kept in dedicated columns
    - Atomic run/success/error counter increments
    - Execution records with per-action results
    - Custom workflow templates
    """

    def __init__(self, db_path: str | Path | None = None, max_executions: int = 1000) -> None:
        """Initialize the repository.

        Args:
            db_path: Path to SQLite database file. None for in-memory database.
            max_executions: Execution records kept per workflow by ``prune_executions``.
        """
        self.max_executions = max_executions
        super().__init__(db_path)

    def _init_db(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS workflows (
                    id TEXT PRIMARY KEY,
                    store_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    enabled INTEGER NOT NULL,
                    definition_json TEXT NOT NULL,
                    run_count INTEGER DEFAULT 0,
                    success_count INTEGER DEFAULT 0,
                    error_count INTEGER DEFAULT 0,
                    version INTEGER DEFAULT 1,
                    last_run TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflows_store_id
                ON workflows(store_id)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS workflow_executions (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    error TEXT,
                    trigger_data_json TEXT,
                    action_results_json TEXT,
                    context_json TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflow_executions_workflow_id
                ON workflow_executions(workflow_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_workflow_executions_started_at
                ON workflow_executions(started_at DESC)
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS workflow_templates (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    category TEXT,
                    template_json TEXT NOT NULL,
                    variables_json TEXT,
                    tags_json TEXT,
                    created_at TEXT NOT NULL
                )
            """)

        logger.info("Workflow repository initialized: %s", self.db_path)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def save_workflow(self, workflow: Workflow) -> None:
        """Insert a workflow or update its definition.

        Statistics columns are written on insert only; afterwards they change
        exclusively through ``increment_stats``.
        """
        definition = workflow.model_dump(mode="json", include=_DEFINITION_FIELDS)
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO workflows (
                    id, store_id, name, enabled, definition_json,
                    run_count, success_count, error_count, version,
                    last_run, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    store_id = excluded.store_id,
                    name = excluded.name,
                    enabled = excluded.enabled,
                    definition_json = excluded.definition_json,
                    version = excluded.version,
                    updated_at = excluded.updated_at
                """,
                (
                    workflow.id,
                    workflow.store_id,
                    workflow.name,
                    1 if workflow.enabled else 0,
                    json.dumps(definition),
                    workflow.run_count,
                    workflow.success_count,
                    workflow.error_count,
                    workflow.version,
                    workflow.last_run.isoformat() if workflow.last_run else None,
                    workflow.created_at.isoformat(),
                    workflow.updated_at.isoformat(),
                ),
            )

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM workflows WHERE id = ?", (workflow_id,))
            row = cursor.fetchone()
        return self._row_to_workflow(row) if row else None

    def list_workflows(
        self, store_id: str | None = None, enabled: bool | None = None
    ) -> list[Workflow]:
        """List workflows, newest first.

        Args:
            store_id: Restrict to one store
            enabled: Restrict to enabled or disabled workflows
        """
        query = "SELECT * FROM workflows WHERE 1=1"
        params: list[Any] = []
        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)
        if enabled is not None:
            query += " AND enabled = ?"
            params.append(1 if enabled else 0)
        query += " ORDER BY created_at DESC"

        with self._cursor() as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_workflow(row) for row in rows]

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow definition. Its execution history is kept."""
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM workflows WHERE id = ?", (workflow_id,))
            return cursor.rowcount > 0

    def increment_stats(
        self, workflow_id: str, success: bool, last_run: datetime | None = None
    ) -> None:
        """Atomically count one run and its outcome."""
        column = "success_count" if success else "error_count"
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE workflows
                SET run_count = run_count + 1,
                    {column} = {column} + 1,
                    last_run = ?
                WHERE id = ?
                """,
                ((last_run or utcnow()).isoformat(), workflow_id),
            )

    @staticmethod
    def _row_to_workflow(row: Any) -> Workflow:
        data = json.loads(row["definition_json"])
        data.update(
            enabled=bool(row["enabled"]),
            run_count=row["run_count"],
            success_count=row["success_count"],
            error_count=row["error_count"],
            version=row["version"],
            last_run=row["last_run"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
        return Workflow.model_validate(data)

    # ------------------------------------------------------------------
    # Executions
    # ------------------------------------------------------------------

    def save_execution(self, execution: WorkflowExecution) -> None:
        """Insert or overwrite an execution record."""
        data = execution.to_dict()
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO workflow_executions (
                    id, workflow_id, status, started_at, completed_at, error,
                    trigger_data_json, action_results_json, context_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["id"],
                    data["workflow_id"],
                    data["status"],
                    data["started_at"],
                    data["completed_at"],
                    data["error"],
                    json.dumps(data["trigger_data"], default=str),
                    json.dumps(data["action_results"], default=str),
                    json.dumps(data["context"], default=str),
                ),
            )

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM workflow_executions WHERE id = ?", (execution_id,))
            row = cursor.fetchone()
        return self._row_to_execution(row) if row else None

    def list_executions(self, workflow_id: str, limit: int = 50) -> list[WorkflowExecution]:
        """Most recent executions of one workflow."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT * FROM workflow_executions
                WHERE workflow_id = ?
                ORDER BY started_at DESC
                LIMIT ?
                """,
                (workflow_id, limit),
            )
            rows = cursor.fetchall()
        return [self._row_to_execution(row) for row in rows]

    def list_executions_since(
        self, workflow_ids: list[str], since: datetime
    ) -> list[WorkflowExecution]:
        """Executions of the given workflows started at or after ``since``."""
        if not workflow_ids:
            return []
        placeholders = ",".join("?" for _ in workflow_ids)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                SELECT * FROM workflow_executions
                WHERE workflow_id IN ({placeholders}) AND started_at >= ?
                ORDER BY started_at DESC
                """,
                [*workflow_ids, since.isoformat()],
            )
            rows = cursor.fetchall()
        return [self._row_to_execution(row) for row in rows]

    def mark_interrupted(self) -> int:
        """Fail executions left pending or running by a previous process.

        Returns:
            Number of records updated
        """
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE workflow_executions
                SET status = ?, error = ?, completed_at = ?
                WHERE status IN (?, ?)
                """,
                (
                    ExecutionStatus.FAILED.value,
                    "Interrupted by engine restart",
                    utcnow().isoformat(),
                    ExecutionStatus.PENDING.value,
                    ExecutionStatus.RUNNING.value,
                ),
            )
            count = cursor.rowcount
        if count:
            logger.warning("Marked %d interrupted executions as failed", count)
        return count

    def prune_executions(self, workflow_id: str, keep: int | None = None) -> int:
        """Delete all but the newest ``keep`` executions of a workflow."""
        keep = keep or self.max_executions
        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM workflow_executions
                WHERE workflow_id = ? AND id NOT IN (
                    SELECT id FROM workflow_executions
                    WHERE workflow_id = ?
                    ORDER BY started_at DESC
                    LIMIT ?
                )
                """,
                (workflow_id, workflow_id, keep),
            )
            return cursor.rowcount

    @staticmethod
    def _row_to_execution(row: Any) -> WorkflowExecution:
        return WorkflowExecution.from_dict(
            {
                "id": row["id"],
                "workflow_id": row["workflow_id"],
                "status": row["status"],
                "started_at": row["started_at"],
                "completed_at": row["completed_at"],
                "error": row["error"],
                "trigger_data": json.loads(row["trigger_data_json"] or "null"),
                "action_results": json.loads(row["action_results_json"] or "[]"),
                "context": json.loads(row["context_json"] or "{}"),
            }
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def save_template(self, template: dict[str, Any]) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO workflow_templates (
                    id, name, description, category, template_json,
                    variables_json, tags_json, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    template["id"],
                    template["name"],
                    template.get("description", ""),
                    template.get("category", "general"),
                    json.dumps(template["template"]),
                    json.dumps(template.get("variables", [])),
                    json.dumps(template.get("tags", [])),
                    utcnow().isoformat(),
                ),
            )

    def list_templates(self) -> list[dict[str, Any]]:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM workflow_templates ORDER BY created_at")
            rows = cursor.fetchall()
        return [self._row_to_template(row) for row in rows]

    def get_template(self, template_id: str) -> dict[str, Any] | None:
        with self._cursor() as cursor:
            cursor.execute("SELECT * FROM workflow_templates WHERE id = ?", (template_id,))
            row = cursor.fetchone()
        return self._row_to_template(row) if row else None

    @staticmethod
    def _row_to_template(row: Any) -> dict[str, Any]:
        return {
            "id": row["id"],
            "name": row["name"],
            "description": row["description"] or "",
            "category": row["category"] or "general",
            "template": json.loads(row["template_json"]),
            "variables": json.loads(row["variables_json"] or "[]"),
            "tags": json.loads(row["tags_json"] or "[]"),
        }


__all__ = ["WorkflowRepository"]
