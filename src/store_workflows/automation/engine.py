"""Workflow engine: CRUD, trigger lifecycle, queueing and execution.

The engine is an explicit object wired together by the application root
(see ``store_workflows.app``). It owns workflow statistics and the whole
execution-record lifecycle; action executors only return results.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..core.config import ExecutionConfig
from ..core.exceptions import (
    CancellationRequested,
    ExecutionFatalError,
    TriggerRegistrationError,
    ValidationError,
    WorkflowNotFoundError,
)
from ..core.logger import get_logger, log_exception
from .builder import ValidationResult, WorkflowBuilder
from .models import (
    ActionResult,
    ActionStatus,
    ExecutionStatus,
    Workflow,
    WorkflowAction,
    WorkflowExecution,
    new_id,
    utcnow,
)
from .queue import ExecutionQueue, QueuedExecution
from .rules import evaluate_filters

if TYPE_CHECKING:
    from ..persistence.workflows import WorkflowRepository
    from ..scheduler import TaskScheduler
    from .actions import ActionExecutor
    from .triggers import TriggerManager

logger = get_logger("automation.engine")

TIME_RANGES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

_PROTECTED_FIELDS = {
    "id",
    "run_count",
    "success_count",
    "error_count",
    "version",
    "last_run",
    "created_at",
    "updated_at",
}


class CancellationToken:
    """Cooperative cancellation flag for one execution.

    Passed down the execution call and checked between actions; an action
    already running is never interrupted.
    """

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationRequested(self.execution_id)


class WorkflowEngine:
    """Orchestrates workflows from trigger to finished execution record."""

    def __init__(
        self,
        repository: WorkflowRepository,
        executor: ActionExecutor,
        trigger_manager: TriggerManager,
        builder: WorkflowBuilder | None = None,
        queue: ExecutionQueue | None = None,
        config: ExecutionConfig | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            repository: Workflow and execution storage
            executor: Dispatches actions to their executors
            trigger_manager: Trigger registrations; its callback is bound to ``enqueue``
            builder: Validator and template source
            queue: Execution queue shared by the workers
            config: Worker pool settings
            scheduler: Scheduler started and stopped with the engine
        """
        self.repository = repository
        self.executor = executor
        self.trigger_manager = trigger_manager
        self.builder = builder or WorkflowBuilder(repository=repository)
        self.config = config or ExecutionConfig()
        self.queue = queue or ExecutionQueue(self.config.queue_maxsize)
        self.scheduler = scheduler

        self.trigger_manager.set_callback(self.enqueue)
        self.trigger_manager.is_enabled = self._is_enabled

        self._definition_lock = threading.RLock()
        self._locks_guard = threading.Lock()
        self._workflow_locks: dict[str, threading.Lock] = {}
        self._tokens_guard = threading.Lock()
        self._active_tokens: dict[str, CancellationToken] = {}
        self._workers: list[threading.Thread] = []
        self._stop_event = threading.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return any(worker.is_alive() for worker in self._workers)

    def start(self) -> None:
        """Register persisted triggers and start the scheduler and workers."""
        if self.is_running:
            return
        self.repository.mark_interrupted()
        self.load_enabled_workflows()
        if self.scheduler is not None and self.scheduler.config.enabled:
            self.scheduler.start()

        self._stop_event.clear()
        self._workers = [
            threading.Thread(target=self._worker_loop, name=f"workflow-worker-{i}", daemon=True)
            for i in range(self.config.workers)
        ]
        for worker in self._workers:
            worker.start()
        logger.info("Workflow engine started with %d workers", len(self._workers))

    def stop(self, wait: bool = True) -> None:
        """Stop workers, triggers and the scheduler.

        Queued executions that have not started are dropped.
        """
        self._stop_event.set()
        self.queue.close()
        if wait:
            for worker in self._workers:
                worker.join()
        self._workers = []
        self.trigger_manager.shutdown()
        if self.scheduler is not None:
            self.scheduler.shutdown(wait=wait)
        dropped = self.queue.qsize()
        if dropped:
            logger.warning("Dropped %d queued executions on shutdown", dropped)
        logger.info("Workflow engine stopped")

    def load_enabled_workflows(self) -> int:
        """Register the trigger of every persisted enabled workflow.

        Returns:
            Number of triggers registered
        """
        count = 0
        for workflow in self.repository.list_workflows(enabled=True):
            try:
                self.trigger_manager.register_trigger(
                    workflow.id, workflow.trigger, workflow.store_id
                )
                count += 1
            except TriggerRegistrationError as e:
                logger.error("Failed to restore trigger for workflow %s: %s", workflow.id, e)
        logger.info("Restored %d workflow triggers", count)
        return count

    # ------------------------------------------------------------------
    # Workflow CRUD
    # ------------------------------------------------------------------

    def validate_workflow(self, definition: dict[str, Any] | Workflow) -> ValidationResult:
        return self.builder.validate_workflow(definition)

    def _validated(self, definition: dict[str, Any]) -> Workflow:
        result = self.builder.validate_workflow(definition)
        if not result.valid:
            raise ValidationError(result.errors)
        for warning in result.warnings:
            logger.warning("Workflow '%s': %s", definition.get("name"), warning)
        return Workflow.model_validate(definition)

    def _check_registrable(self, workflow: Workflow) -> None:
        if not workflow.enabled:
            return
        errors = self.trigger_manager.validate_trigger(workflow.trigger)
        if errors:
            raise TriggerRegistrationError(workflow.id, "; ".join(errors))

    def create_workflow(self, definition: dict[str, Any] | Workflow) -> str:
        """Validate, persist and (if enabled) register a workflow.

        Returns:
            The new workflow id

        Raises:
            ValidationError: If the definition is malformed
            TriggerRegistrationError: If an enabled workflow's trigger cannot be registered
        """
        if isinstance(definition, Workflow):
            definition = definition.model_dump(mode="json")
        data = {key: value for key, value in definition.items() if key not in _PROTECTED_FIELDS}
        data["id"] = definition.get("id") or new_id()
        workflow = self._validated(data)
        self._check_registrable(workflow)

        with self._definition_lock:
            self.repository.save_workflow(workflow)
            if workflow.enabled:
                try:
                    self.trigger_manager.register_trigger(
                        workflow.id, workflow.trigger, workflow.store_id
                    )
                except TriggerRegistrationError:
                    self.repository.delete_workflow(workflow.id)
                    raise
        logger.info("Created workflow %s ('%s')", workflow.id, workflow.name)
        return workflow.id

    def update_workflow(self, workflow_id: str, patch: Mapping[str, Any]) -> Workflow:
        """Merge ``patch`` into a workflow, bump its version and resync its trigger.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist
            ValidationError: If the merged definition is malformed
            TriggerRegistrationError: If the trigger cannot be registered
        """
        with self._definition_lock:
            current = self._require(workflow_id)
            merged = current.model_dump(mode="json")
            merged.update(
                {key: value for key, value in patch.items() if key not in _PROTECTED_FIELDS}
            )
            merged["version"] = current.version + 1
            merged["updated_at"] = utcnow().isoformat()
            updated = self._validated(merged)
            self._check_registrable(updated)

            if not updated.enabled:
                # Unregister before persisting so a disabled workflow never fires.
                self.trigger_manager.unregister_trigger(workflow_id)
                self.repository.save_workflow(updated)
            else:
                self.repository.save_workflow(updated)
                try:
                    self.trigger_manager.register_trigger(
                        workflow_id, updated.trigger, updated.store_id
                    )
                except TriggerRegistrationError:
                    self.repository.save_workflow(current)
                    if not current.enabled:
                        self.trigger_manager.unregister_trigger(workflow_id)
                    raise

        logger.info("Updated workflow %s to version %d", workflow_id, updated.version)
        return self.repository.get_workflow(workflow_id) or updated

    def toggle_workflow(self, workflow_id: str, enabled: bool) -> Workflow:
        return self.update_workflow(workflow_id, {"enabled": enabled})

    def duplicate_workflow(self, workflow_id: str, name: str | None = None) -> str:
        """Copy a workflow as a new, disabled workflow with fresh ids."""
        source = self._require(workflow_id)
        data = source.model_dump(mode="json")
        data["id"] = new_id()
        data["name"] = name or f"{source.name} (copy)"
        data["enabled"] = False
        data["trigger"]["id"] = new_id()
        for action in data["actions"]:
            action["id"] = new_id()
        return self.create_workflow(data)

    def delete_workflow(self, workflow_id: str) -> bool:
        """Unregister a workflow's trigger, then delete it.

        Execution history is kept. Items already queued for the workflow are
        skipped by the worker that dequeues them.
        """
        with self._definition_lock:
            self.trigger_manager.unregister_trigger(workflow_id)
            deleted = self.repository.delete_workflow(workflow_id)
        with self._locks_guard:
            lock = self._workflow_locks.get(workflow_id)
            if lock is not None and not lock.locked():
                del self._workflow_locks[workflow_id]
        if deleted:
            logger.info("Deleted workflow %s", workflow_id)
        return deleted

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self.repository.get_workflow(workflow_id)

    def get_workflows(self, store_id: str, enabled: bool | None = None) -> list[Workflow]:
        return self.repository.list_workflows(store_id=store_id, enabled=enabled)

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def _is_enabled(self, workflow_id: str) -> bool:
        workflow = self.repository.get_workflow(workflow_id)
        return bool(workflow and workflow.enabled)

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def get_templates(self, category: str | None = None) -> list[Any]:
        return self.builder.get_templates(category)

    def get_template(self, template_id: str) -> Any:
        return self.builder.get_template(template_id)

    def create_from_template(
        self, template_id: str, store_id: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return self.builder.create_from_template(template_id, store_id, variables)

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def enqueue(self, workflow_id: str, trigger_data: dict[str, Any] | None = None) -> str | None:
        """Trigger callback: queue an execution for an enabled workflow.

        Returns:
            The id the execution will carry, or None if the workflow is
            missing or disabled

        Raises:
            QueueFullError: If the queue is at capacity
        """
        if not self._is_enabled(workflow_id):
            logger.debug("Ignoring trigger for missing or disabled workflow %s", workflow_id)
            return None
        item = QueuedExecution(workflow_id=workflow_id, trigger_data=dict(trigger_data or {}))
        # The token exists from here until the run ends, so the id can be
        # cancelled while a worker is between dequeue and execution.
        with self._tokens_guard:
            self._active_tokens[item.id] = CancellationToken(item.id)
        try:
            self.queue.put(item)
        except Exception:
            self._drop_token(item.id)
            raise
        logger.info("Workflow triggered: %s (execution %s queued)", workflow_id, item.id)
        return item.id

    def _drop_token(self, execution_id: str) -> None:
        with self._tokens_guard:
            self._active_tokens.pop(execution_id, None)

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            item = self.queue.get(timeout=self.config.poll_interval)
            if item is None:
                continue
            try:
                self.run_queued(item)
            except ExecutionFatalError:
                pass  # already logged with full context by execute_workflow
            except Exception as e:
                log_exception(logger, e, context=f"Worker failed on queued execution {item.id}")
            finally:
                self.queue.task_done(item)

    def run_queued(self, item: QueuedExecution) -> str | None:
        """Execute one dequeued item.

        Returns:
            The execution id, or None if the item was skipped
        """
        with self._tokens_guard:
            token = self._active_tokens.get(item.id)
        try:
            workflow = self.repository.get_workflow(item.workflow_id)
            # The workflow may have been deleted or disabled after this item was
            # queued. Such items are skipped without an execution record: the
            # trigger that produced them is already gone, and there is no
            # workflow left to attribute statistics to.
            if workflow is None:
                logger.warning(
                    "Skipping queued execution %s: workflow %s no longer exists",
                    item.id,
                    item.workflow_id,
                )
                return None
            if not workflow.enabled:
                logger.info(
                    "Skipping queued execution %s: workflow %s is disabled", item.id, workflow.id
                )
                return None
            if token is not None and token.cancelled:
                self._record_cancelled_before_start(item)
                return None
            return self.execute_workflow(
                workflow, item.trigger_data, execution_id=item.id, token=token
            )
        finally:
            self._drop_token(item.id)

    def _record_cancelled_before_start(self, item: QueuedExecution) -> None:
        record = WorkflowExecution(
            workflow_id=item.workflow_id,
            trigger_data=item.trigger_data,
            id=item.id,
            status=ExecutionStatus.CANCELLED,
            started_at=item.enqueued_at,
            completed_at=utcnow(),
            error="Cancelled before start",
        )
        self.repository.save_execution(record)
        logger.info("Cancelled queued execution %s before it started", item.id)

    def drain(self) -> list[str]:
        """Run every eligible queued item in the calling thread.

        Returns:
            IDs of executions that ran
        """
        executed: list[str] = []
        while True:
            item = self.queue.get(timeout=0)
            if item is None:
                return executed
            try:
                execution_id = self.run_queued(item)
            finally:
                self.queue.task_done(item)
            if execution_id:
                executed.append(execution_id)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _workflow_lock(self, workflow_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._workflow_locks.get(workflow_id)
            if lock is None:
                lock = self._workflow_locks[workflow_id] = threading.Lock()
            return lock

    def _persist(self, execution: WorkflowExecution, action_id: str | None = None) -> None:
        try:
            self.repository.save_execution(execution)
        except Exception as e:
            raise ExecutionFatalError(
                f"Failed to persist execution {execution.id}: {e}",
                workflow_id=execution.workflow_id,
                execution_id=execution.id,
                action_id=action_id,
            ) from e

    def execute_workflow(
        self,
        workflow: Workflow | str,
        trigger_data: Any = None,
        execution_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> str:
        """Run a workflow to a terminal state and return the execution id.

        Callable directly for manual runs; the trigger path goes through the
        queue and applies the enabled check there. At most one execution per
        workflow runs at a time.

        Args:
            workflow: Workflow or workflow id
            trigger_data: Payload exposed to filters and actions
            execution_id: Id to record under, e.g. the queued item's id
            token: Cancellation token registered when the item was queued

        Raises:
            WorkflowNotFoundError: If a workflow id is given and does not exist
            ExecutionFatalError: If the engine cannot record the execution
        """
        if isinstance(workflow, str):
            workflow = self._require(workflow)
        if trigger_data is None:
            trigger_data = {}

        execution = WorkflowExecution(
            workflow_id=workflow.id,
            trigger_data=trigger_data,
            id=execution_id or new_id(),
            status=ExecutionStatus.RUNNING,
        )
        if token is None:
            token = CancellationToken(execution.id)

        with self._workflow_lock(workflow.id):
            with self._tokens_guard:
                self._active_tokens[execution.id] = token
            try:
                self._run(workflow, execution, token)
            finally:
                with self._tokens_guard:
                    self._active_tokens.pop(execution.id, None)
        return execution.id

    def _run(
        self, workflow: Workflow, execution: WorkflowExecution, token: CancellationToken
    ) -> None:
        trigger_data = execution.trigger_data
        shared_data: dict[str, Any] = {}
        context: dict[str, Any] = {
            "trigger_data": trigger_data,
            "store_id": workflow.store_id,
            "shared_data": shared_data,
            "workflow_id": workflow.id,
            "execution_id": execution.id,
            "workflow": {"id": workflow.id, "name": workflow.name, "version": workflow.version},
        }
        trigger_fields = dict(trigger_data) if isinstance(trigger_data, Mapping) else {}

        failed: list[str] = []
        halted_by: str | None = None
        current: WorkflowAction | None = None
        counted = False
        try:
            self._persist(execution)
            logger.info("Starting execution %s of workflow %s", execution.id, workflow.id)
            if not evaluate_filters(workflow.trigger.config.filters, trigger_data):
                # A suppressed match is not a run: no action results, no stats.
                execution.status = ExecutionStatus.COMPLETED
                execution.completed_at = utcnow()
                execution.context = {"suppressed": True}
                self._persist(execution)
                logger.info("Execution %s suppressed by trigger filters", execution.id)
                return

            try:
                for action in workflow.sorted_actions():
                    token.raise_if_cancelled()
                    current = action
                    result = self._run_action(action, context, {**trigger_fields, **shared_data})
                    execution.action_results.append(result)
                    self._persist(execution, action.id)
                    if result.status == ActionStatus.FAILED:
                        failed.append(action.id)
                        if action.halt_on_failure:
                            halted_by = action.id
                            break
                    current = None
                if failed:
                    execution.status = ExecutionStatus.FAILED
                    execution.error = f"{len(failed)} action(s) failed: {', '.join(failed)}"
                    if halted_by:
                        execution.error += f"; halted after {halted_by}"
                else:
                    execution.status = ExecutionStatus.COMPLETED
            except CancellationRequested:
                execution.status = ExecutionStatus.CANCELLED
                execution.error = "Cancelled"
                logger.info("Execution %s cancelled", execution.id)

            execution.completed_at = utcnow()
            execution.context = {"store_id": workflow.store_id, "shared_data": shared_data}
            self._persist(execution)
            self.repository.increment_stats(
                workflow.id, success=not failed, last_run=execution.completed_at
            )
            counted = True
        except Exception as e:
            self._fail_fatal(
                workflow, execution, e, current.id if current else None, counted=counted
            )

        try:
            self.repository.prune_executions(workflow.id)
        except Exception as e:
            logger.warning("Could not prune execution history of %s: %s", workflow.id, e)

        logger.info(
            "Execution %s of workflow %s finished: %s",
            execution.id,
            workflow.id,
            execution.status.value,
        )

    def _run_action(
        self, action: WorkflowAction, context: dict[str, Any], condition_context: dict[str, Any]
    ) -> ActionResult:
        started = utcnow()
        if action.conditions and not evaluate_filters(action.conditions, condition_context):
            logger.debug("Action %s skipped: conditions not met", action.id)
            return ActionResult(
                action_id=action.id,
                status=ActionStatus.SKIPPED,
                started_at=started,
                completed_at=utcnow(),
            )

        try:
            result = self.executor.execute_action(action, context)
        except Exception as e:
            logger.error(
                "Action %s (%s) failed in execution %s: %s",
                action.id,
                action.type.value,
                context["execution_id"],
                e,
            )
            return ActionResult(
                action_id=action.id,
                status=ActionStatus.FAILED,
                started_at=started,
                completed_at=utcnow(),
                error=str(e),
            )

        context["shared_data"][action.id] = result
        return ActionResult(
            action_id=action.id,
            status=ActionStatus.COMPLETED,
            started_at=started,
            completed_at=utcnow(),
            result=result,
        )

    def _fail_fatal(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        error: Exception,
        action_id: str | None,
        counted: bool = False,
    ) -> None:
        logger.error(
            "Fatal error in execution %s of workflow %s (action in progress: %s): %s",
            execution.id,
            workflow.id,
            action_id,
            error,
            exc_info=True,
        )
        execution.status = ExecutionStatus.FAILED
        execution.error = f"Fatal: {error}"
        execution.completed_at = utcnow()
        try:
            self.repository.save_execution(execution)
        except Exception as e:
            logger.error("Could not record fatal failure of %s: %s", execution.id, e)
        if not counted:
            try:
                self.repository.increment_stats(workflow.id, success=False)
            except Exception as e:
                logger.error("Could not update statistics of workflow %s: %s", workflow.id, e)
        if isinstance(error, ExecutionFatalError):
            raise error
        raise ExecutionFatalError(
            str(error), workflow_id=workflow.id, execution_id=execution.id, action_id=action_id
        ) from error

    # ------------------------------------------------------------------
    # Execution queries
    # ------------------------------------------------------------------

    def get_executions(self, workflow_id: str, limit: int = 50) -> list[WorkflowExecution]:
        return self.repository.list_executions(workflow_id, limit)

    def get_execution(self, execution_id: str) -> WorkflowExecution | None:
        return self.repository.get_execution(execution_id)

    def cancel_execution(self, execution_id: str) -> bool:
        """Request cancellation of a queued or running execution.

        A running execution stops before its next action. A queued one is
        removed from the queue and recorded as cancelled.

        Returns:
            False if the execution is unknown or already finished
        """
        item = self.queue.remove(execution_id)
        if item is not None:
            self._drop_token(execution_id)
            self._record_cancelled_before_start(item)
            return True

        with self._tokens_guard:
            token = self._active_tokens.get(execution_id)
        if token is not None:
            # Dequeued or running: the worker sees the flag before the next step.
            token.cancel()
            logger.info("Cancellation requested for execution %s", execution_id)
            return True

        execution = self.repository.get_execution(execution_id)
        if execution is None or execution.status.is_terminal:
            return False
        # Left running by a process that no longer owns it.
        execution.status = ExecutionStatus.CANCELLED
        execution.completed_at = utcnow()
        self.repository.save_execution(execution)
        return True

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self, store_id: str, time_range: str = "7d") -> dict[str, Any]:
        """Aggregate workflow and execution statistics for a store.

        Raises:
            ValidationError: If ``time_range`` is not one of 24h, 7d, 30d
        """
        if time_range not in TIME_RANGES:
            raise ValidationError(f"Unknown time range: {time_range}")

        now = utcnow()
        range_start = now - TIME_RANGES[time_range]
        week_start = now - timedelta(days=7)
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

        workflows = self.repository.list_workflows(store_id=store_id)
        executions = self.repository.list_executions_since(
            [wf.id for wf in workflows], min(range_start, week_start, today_start)
        )

        def started_since(execution: WorkflowExecution, since: datetime) -> bool:
            return execution.started_at >= since

        in_range = [e for e in executions if started_since(e, range_start)]
        finished = [e for e in in_range if e.status.is_terminal]
        succeeded = [e for e in finished if e.status == ExecutionStatus.COMPLETED]
        durations = [e.duration_ms for e in finished if e.duration_ms is not None]

        top = sorted(
            (wf for wf in workflows if wf.run_count > 0),
            key=lambda wf: (wf.success_rate, wf.run_count),
            reverse=True,
        )[:5]

        return {
            "store_id": store_id,
            "time_range": time_range,
            "total_workflows": len(workflows),
            "active_workflows": sum(1 for wf in workflows if wf.enabled),
            "total_executions": len(in_range),
            "success_rate": round(len(succeeded) / len(finished) * 100, 2) if finished else 0.0,
            "avg_execution_time": round(sum(durations) / len(durations), 2) if durations else 0.0,
            "executions_today": sum(1 for e in executions if started_since(e, today_start)),
            "executions_this_week": sum(1 for e in executions if started_since(e, week_start)),
            "top_performing_workflows": [
                {
                    "workflow_id": wf.id,
                    "name": wf.name,
                    "success_rate": round(wf.success_rate, 2),
                    "execution_count": wf.run_count,
                }
                for wf in top
            ],
        }


__all__ = ["CancellationToken", "TIME_RANGES", "WorkflowEngine"]
