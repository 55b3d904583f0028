"""Tests for the workflow engine.

Tests cover:
- Workflow CRUD and the enabled/registered invariant
- Queueing and the worker path, including orphaned queue items
- Execution semantics: trigger gating, ordering, conditions, failures
- Cooperative cancellation
- Fatal engine errors
- Metrics aggregation
"""

from __future__ import annotations

import sqlite3
import threading
import time
from unittest.mock import patch

import pytest

from store_workflows.automation.engine import CancellationToken, WorkflowEngine
from store_workflows.automation.models import (
    ActionStatus,
    ExecutionStatus,
    Workflow,
    WorkflowExecution,
)
from store_workflows.automation.triggers import TriggerManager
from store_workflows.core.config import ExecutionConfig
from store_workflows.core.exceptions import (
    CancellationRequested,
    ExecutionFatalError,
    TriggerRegistrationError,
    ValidationError,
    WorkflowNotFoundError,
)


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return False


def _statuses(execution: WorkflowExecution) -> list[ActionStatus]:
    return [result.status for result in execution.action_results]


# ==============================================================================
# CRUD
# ==============================================================================


class TestWorkflowCrud:
    """Create, update, toggle, duplicate and delete."""

    def test_create_enabled_workflow_registers_trigger(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        workflow = engine.get_workflow(workflow_id)
        assert workflow is not None
        assert workflow.enabled is True
        assert engine.trigger_manager.is_registered(workflow_id)

    def test_create_disabled_workflow_is_not_registered(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow(enabled=False))

        assert engine.get_workflow(workflow_id) is not None
        assert not engine.trigger_manager.is_registered(workflow_id)

    def test_create_resets_statistics(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow(run_count=99, version=7))

        workflow = engine.get_workflow(workflow_id)
        assert workflow.run_count == 0
        assert workflow.version == 1

    def test_create_invalid_workflow_raises_and_persists_nothing(self, engine, make_workflow):
        with pytest.raises(ValidationError) as exc_info:
            engine.create_workflow(make_workflow(name="", actions=[]))

        assert "Workflow name is required" in exc_info.value.errors
        assert "At least one action is required" in exc_info.value.errors
        assert engine.repository.list_workflows() == []

    def test_create_unregistrable_trigger_raises(self, repository, executor, mock_scheduler):
        manager = TriggerManager(scheduler=mock_scheduler)  # no metric provider
        engine = WorkflowEngine(repository, executor, manager)
        definition = {
            "name": "Stock watch",
            "store_id": "store-1",
            "trigger": {
                "name": "Low stock",
                "type": "threshold",
                "config": {"metric": "low_inventory", "operator": "gt", "value": 0},
            },
            "actions": [
                {"name": "Mail", "type": "email", "config": {"recipient": "a@b.c"}, "order": 1}
            ],
        }

        with pytest.raises(TriggerRegistrationError):
            engine.create_workflow(definition)

        assert repository.list_workflows() == []
        assert manager.registered_ids() == []

    def test_update_bumps_version_and_keeps_statistics(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        engine.execute_workflow(workflow_id, {"quantity": 1})

        updated = engine.update_workflow(workflow_id, {"name": "Renamed", "run_count": 0})

        assert updated.name == "Renamed"
        assert updated.version == 2
        assert updated.run_count == 1

    def test_update_invalid_patch_leaves_workflow_untouched(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        with pytest.raises(ValidationError):
            engine.update_workflow(workflow_id, {"actions": []})

        assert engine.get_workflow(workflow_id).version == 1
        assert engine.trigger_manager.is_registered(workflow_id)

    def test_update_replaces_trigger_registration(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        original = engine.trigger_manager.get_registration(workflow_id)

        trigger = make_workflow()["trigger"]
        trigger["config"]["event_type"] = "inventory.restocked"
        engine.update_workflow(workflow_id, {"trigger": trigger})

        manager = engine.trigger_manager
        assert manager.get_registration(workflow_id) is not original
        assert manager.handle_external_event("inventory.updated", {"quantity": 1}) == []
        assert manager.handle_external_event("inventory.restocked", {"quantity": 1}) == [
            workflow_id
        ]

    def test_update_missing_workflow_raises(self, engine):
        with pytest.raises(WorkflowNotFoundError):
            engine.update_workflow("missing", {"name": "x"})

    def test_toggle_keeps_registration_in_step_with_enabled(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        engine.toggle_workflow(workflow_id, False)
        assert engine.get_workflow(workflow_id).enabled is False
        assert not engine.trigger_manager.is_registered(workflow_id)

        engine.toggle_workflow(workflow_id, True)
        assert engine.get_workflow(workflow_id).enabled is True
        assert engine.trigger_manager.is_registered(workflow_id)

    def test_duplicate_creates_disabled_copy_with_fresh_ids(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        source = engine.get_workflow(workflow_id)

        copy_id = engine.duplicate_workflow(workflow_id)
        duplicate = engine.get_workflow(copy_id)

        assert copy_id != workflow_id
        assert duplicate.name == f"{source.name} (copy)"
        assert duplicate.enabled is False
        assert not engine.trigger_manager.is_registered(copy_id)
        assert {a.id for a in duplicate.actions}.isdisjoint({a.id for a in source.actions})

    def test_delete_unregisters_and_keeps_history(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        execution_id = engine.execute_workflow(workflow_id, {"quantity": 1})

        assert engine.delete_workflow(workflow_id) is True

        assert engine.get_workflow(workflow_id) is None
        assert not engine.trigger_manager.is_registered(workflow_id)
        assert engine.get_execution(execution_id) is not None

    def test_delete_is_idempotent(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        assert engine.delete_workflow(workflow_id) is True
        assert engine.delete_workflow(workflow_id) is False

    def test_delete_releases_the_workflow_lock(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        engine.execute_workflow(workflow_id, {"quantity": 1})
        assert workflow_id in engine._workflow_locks

        engine.delete_workflow(workflow_id)

        assert workflow_id not in engine._workflow_locks

    def test_get_workflows_filters_by_store_and_enabled(self, engine, make_workflow):
        engine.create_workflow(make_workflow())
        engine.create_workflow(make_workflow(enabled=False))
        engine.create_workflow(make_workflow(store_id="store-2"))

        assert len(engine.get_workflows("store-1")) == 2
        assert len(engine.get_workflows("store-1", enabled=True)) == 1
        assert len(engine.get_workflows("store-2")) == 1


# ==============================================================================
# Queueing
# ==============================================================================


class TestQueueing:
    """Trigger callback, queue and worker path."""

    def test_disabled_workflow_event_creates_no_execution(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow(enabled=False))

        fired = engine.trigger_manager.handle_external_event("inventory.updated", {"quantity": 5})

        assert fired == []
        assert engine.enqueue(workflow_id, {"quantity": 5}) is None
        assert engine.queue.qsize() == 0
        assert engine.get_executions(workflow_id) == []

    def test_enqueue_unknown_workflow_is_ignored(self, engine):
        assert engine.enqueue("missing", {}) is None
        assert engine.queue.qsize() == 0

    def test_matching_event_is_queued_and_executed(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        fired = engine.trigger_manager.handle_external_event("inventory.updated", {"quantity": 5})
        assert fired == [workflow_id]
        assert engine.queue.qsize() == 1

        executed = engine.drain()

        assert len(executed) == 1
        execution = engine.get_execution(executed[0])
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.trigger_data["event_type"] == "inventory.updated"
        assert executor.calls == ["first", "second", "third"]

    def test_queued_item_of_deleted_workflow_is_skipped(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        queued_id = engine.enqueue(workflow_id, {"quantity": 5})

        engine.delete_workflow(workflow_id)
        executed = engine.drain()

        assert executed == []
        assert engine.get_execution(queued_id) is None
        assert executor.calls == []

    def test_queued_item_of_disabled_workflow_is_skipped(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        engine.enqueue(workflow_id, {"quantity": 5})

        engine.toggle_workflow(workflow_id, False)

        assert engine.drain() == []
        assert executor.calls == []

    def test_workers_run_one_execution_per_workflow_at_a_time(
        self, engine, executor, make_workflow
    ):
        workflow_id = engine.create_workflow(make_workflow())
        active = 0
        peak = 0
        guard = threading.Lock()

        def track() -> None:
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.05)
            with guard:
                active -= 1

        executor.hooks["first"] = track
        engine.start()
        for _ in range(3):
            engine.enqueue(workflow_id, {"quantity": 1})

        assert _wait_for(
            lambda: engine.get_workflow(workflow_id).run_count == 3
        ), "workers did not finish"
        assert peak == 1

    def test_worker_logs_unexpected_errors_and_keeps_going(
        self, engine, executor, make_workflow, caplog
    ):
        workflow_id = engine.create_workflow(make_workflow())
        real_run_queued = engine.run_queued
        calls = []

        def fail_first(item):
            calls.append(item.id)
            if len(calls) == 1:
                raise RuntimeError("worker boom")
            return real_run_queued(item)

        with patch.object(engine, "run_queued", side_effect=fail_first):
            engine.start()
            failed_id = engine.enqueue(workflow_id, {"quantity": 1})
            assert _wait_for(lambda: len(calls) == 1)
            engine.enqueue(workflow_id, {"quantity": 2})
            assert _wait_for(lambda: engine.get_workflow(workflow_id).run_count == 1)

        assert f"Worker failed on queued execution {failed_id}: worker boom" in caplog.text


# ==============================================================================
# Execution
# ==============================================================================


class TestExecution:
    """Synchronous execution semantics."""

    def test_matching_trigger_data_runs_all_actions(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        execution = engine.get_execution(engine.execute_workflow(workflow_id, {"quantity": 5}))

        assert execution.status == ExecutionStatus.COMPLETED
        assert _statuses(execution) == [ActionStatus.COMPLETED] * 3
        assert executor.calls == ["first", "second", "third"]
        workflow = engine.get_workflow(workflow_id)
        assert workflow.run_count == 1
        assert workflow.success_count == 1
        assert workflow.last_run is not None

    def test_filtered_out_trigger_data_completes_without_actions(
        self, engine, executor, make_workflow
    ):
        workflow_id = engine.create_workflow(make_workflow())

        execution = engine.get_execution(engine.execute_workflow(workflow_id, {"quantity": 50}))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.action_results == []
        assert executor.calls == []
        assert engine.get_workflow(workflow_id).run_count == 0

    def test_failed_action_does_not_abort_remaining_actions(
        self, engine, executor, make_workflow
    ):
        workflow_id = engine.create_workflow(make_workflow())
        executor.fail_on = {"second"}

        execution = engine.get_execution(engine.execute_workflow(workflow_id, {"quantity": 5}))

        assert execution.status == ExecutionStatus.FAILED
        assert _statuses(execution) == [
            ActionStatus.COMPLETED,
            ActionStatus.FAILED,
            ActionStatus.COMPLETED,
        ]
        assert "second exploded" in execution.action_results[1].error
        assert execution.action_results[1].action_id in execution.error
        workflow = engine.get_workflow(workflow_id)
        assert workflow.run_count == 1
        assert workflow.error_count == 1

    def test_halt_on_failure_stops_the_pipeline(self, engine, executor, make_workflow):
        definition = make_workflow()
        definition["actions"][1]["halt_on_failure"] = True
        workflow_id = engine.create_workflow(definition)
        executor.fail_on = {"second"}

        execution = engine.get_execution(engine.execute_workflow(workflow_id, {"quantity": 5}))

        assert execution.status == ExecutionStatus.FAILED
        assert _statuses(execution) == [ActionStatus.COMPLETED, ActionStatus.FAILED]
        assert executor.calls == ["first", "second"]
        assert "halted" in execution.error

    def test_actions_run_by_order_with_list_position_tiebreak(
        self, engine, executor, make_workflow
    ):
        definition = make_workflow()
        definition["actions"][0]["order"] = 2
        definition["actions"][1]["order"] = 1
        definition["actions"][2]["order"] = 1
        workflow_id = engine.create_workflow(definition)

        engine.execute_workflow(workflow_id, {"quantity": 5})

        assert executor.calls == ["second", "third", "first"]

    def test_unmet_action_conditions_skip_the_action(self, engine, executor, make_workflow):
        definition = make_workflow()
        definition["actions"][2]["conditions"] = [
            {"field": "priority", "operator": "equals", "value": "high"}
        ]
        workflow_id = engine.create_workflow(definition)

        execution = engine.get_execution(
            engine.execute_workflow(workflow_id, {"quantity": 5, "priority": "low"})
        )

        assert execution.status == ExecutionStatus.COMPLETED
        assert _statuses(execution)[2] == ActionStatus.SKIPPED
        assert executor.calls == ["first", "second"]

    def test_action_conditions_can_read_earlier_results(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        workflow = engine.get_workflow(workflow_id)
        first_id = workflow.actions[0].id
        actions = [action.model_dump(mode="json") for action in workflow.actions]
        actions[2]["conditions"] = [
            {"field": f"{first_id}.action", "operator": "equals", "value": "first"}
        ]
        engine.update_workflow(workflow_id, {"actions": actions})

        execution = engine.get_execution(engine.execute_workflow(workflow_id, {"quantity": 5}))

        assert _statuses(execution)[2] == ActionStatus.COMPLETED
        assert execution.context["shared_data"][first_id] == {"action": "first"}

    def test_context_exposes_trigger_data_and_store(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        execution_id = engine.execute_workflow(workflow_id, {"quantity": 5})

        context = executor.contexts[0]
        assert context["trigger_data"] == {"quantity": 5}
        assert context["store_id"] == "store-1"
        assert context["workflow_id"] == workflow_id
        assert context["execution_id"] == execution_id

    def test_manual_execution_of_unknown_workflow_raises(self, engine):
        with pytest.raises(WorkflowNotFoundError):
            engine.execute_workflow("missing", {})

    def test_persistence_failure_is_fatal(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())

        with patch.object(
            engine.repository,
            "save_execution",
            side_effect=sqlite3.OperationalError("disk I/O error"),
        ):
            with pytest.raises(ExecutionFatalError) as exc_info:
                engine.execute_workflow(workflow_id, {"quantity": 5})

        assert exc_info.value.workflow_id == workflow_id
        workflow = engine.get_workflow(workflow_id)
        assert workflow.error_count == 1

    def test_history_pruning_failure_does_not_fail_a_finished_run(
        self, engine, make_workflow, caplog
    ):
        workflow_id = engine.create_workflow(make_workflow())

        with patch.object(
            engine.repository, "prune_executions", side_effect=RuntimeError("disk full")
        ):
            execution_id = engine.execute_workflow(workflow_id, {"quantity": 5})

        execution = engine.get_execution(execution_id)
        assert execution.status == ExecutionStatus.COMPLETED
        assert _statuses(execution) == [ActionStatus.COMPLETED] * 3
        workflow = engine.get_workflow(workflow_id)
        assert workflow.run_count == 1
        assert workflow.success_count == 1
        assert workflow.error_count == 0
        assert "Could not prune execution history" in caplog.text

    def test_execution_history_is_newest_first(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        first = engine.execute_workflow(workflow_id, {"quantity": 1})
        second = engine.execute_workflow(workflow_id, {"quantity": 2})

        history = engine.get_executions(workflow_id)

        assert [e.id for e in history] == [second, first]


# ==============================================================================
# Cancellation
# ==============================================================================


class TestCancellation:
    """Cooperative cancellation between actions."""

    def test_token_raises_once_cancelled(self):
        token = CancellationToken("exec-1")
        token.raise_if_cancelled()

        token.cancel()

        assert token.cancelled is True
        with pytest.raises(CancellationRequested):
            token.raise_if_cancelled()

    def test_cancel_during_action_lets_it_finish_and_stops_the_rest(
        self, engine, executor, make_workflow
    ):
        workflow_id = engine.create_workflow(make_workflow())
        started = threading.Event()
        release = threading.Event()

        def block() -> None:
            started.set()
            release.wait(5)

        executor.hooks["second"] = block
        execution_id = "exec-cancel"
        runner = threading.Thread(
            target=engine.execute_workflow,
            args=(workflow_id, {"quantity": 5}),
            kwargs={"execution_id": execution_id},
        )
        runner.start()

        assert started.wait(5)
        assert engine.cancel_execution(execution_id) is True
        release.set()
        runner.join(5)

        execution = engine.get_execution(execution_id)
        assert execution.status == ExecutionStatus.CANCELLED
        assert _statuses(execution) == [ActionStatus.COMPLETED, ActionStatus.COMPLETED]
        assert executor.calls == ["first", "second"]

    def test_cancel_queued_execution_removes_it(self, engine, executor, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        queued_id = engine.enqueue(workflow_id, {"quantity": 5})

        assert engine.cancel_execution(queued_id) is True

        assert engine.queue.qsize() == 0
        assert engine.get_execution(queued_id).status == ExecutionStatus.CANCELLED
        assert engine.drain() == []
        assert executor.calls == []

    def test_cancel_between_dequeue_and_start_is_honoured(
        self, engine, executor, make_workflow
    ):
        workflow_id = engine.create_workflow(make_workflow())
        queued_id = engine.enqueue(workflow_id, {"quantity": 5})
        real_get_workflow = engine.repository.get_workflow
        answers = []

        def cancel_then_load(requested_id):
            answers.append(engine.cancel_execution(queued_id))
            return real_get_workflow(requested_id)

        with patch.object(engine.repository, "get_workflow", side_effect=cancel_then_load):
            executed = engine.drain()

        assert answers == [True]
        assert executed == []
        assert executor.calls == []
        execution = engine.get_execution(queued_id)
        assert execution.status == ExecutionStatus.CANCELLED
        assert engine.get_workflow(workflow_id).run_count == 0

    def test_drained_execution_is_no_longer_cancellable(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        queued_id = engine.enqueue(workflow_id, {"quantity": 5})

        assert engine.drain() == [queued_id]

        assert engine.cancel_execution(queued_id) is False
        assert engine.get_execution(queued_id).status == ExecutionStatus.COMPLETED

    def test_cancel_finished_or_unknown_execution_returns_false(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        execution_id = engine.execute_workflow(workflow_id, {"quantity": 5})

        assert engine.cancel_execution(execution_id) is False
        assert engine.cancel_execution("missing") is False


# ==============================================================================
# Lifecycle
# ==============================================================================


class TestLifecycle:
    """Start and stop."""

    def test_start_restores_persisted_triggers(self, engine, repository, make_workflow):
        workflow = Workflow.model_validate(make_workflow())
        repository.save_workflow(workflow)

        engine.start()

        assert engine.is_running
        assert engine.trigger_manager.is_registered(workflow.id)
        assert engine.scheduler.started is True

    def test_start_fails_interrupted_executions(self, engine, repository, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        stale = WorkflowExecution(
            workflow_id=workflow_id, trigger_data={}, status=ExecutionStatus.RUNNING
        )
        repository.save_execution(stale)

        engine.start()

        assert repository.get_execution(stale.id).status == ExecutionStatus.FAILED

    def test_stop_unregisters_triggers(self, engine, make_workflow):
        workflow_id = engine.create_workflow(make_workflow())
        engine.start()

        engine.stop()

        assert not engine.is_running
        assert not engine.trigger_manager.is_registered(workflow_id)


# ==============================================================================
# Metrics
# ==============================================================================


class TestMetrics:
    """Per-store metrics."""

    def test_metrics_aggregate_executions(self, engine, executor, make_workflow):
        good_id = engine.create_workflow(make_workflow(name="Good"))
        flaky_id = engine.create_workflow(make_workflow(name="Flaky"))
        engine.create_workflow(make_workflow(name="Idle", enabled=False))

        engine.execute_workflow(good_id, {"quantity": 1})
        engine.execute_workflow(flaky_id, {"quantity": 1})
        executor.fail_on = {"first"}
        engine.execute_workflow(flaky_id, {"quantity": 1})

        metrics = engine.get_metrics("store-1", "24h")

        assert metrics["total_workflows"] == 3
        assert metrics["active_workflows"] == 2
        assert metrics["total_executions"] == 3
        assert metrics["success_rate"] == pytest.approx(66.67)
        assert metrics["executions_today"] == 3
        assert metrics["executions_this_week"] == 3
        assert metrics["avg_execution_time"] >= 0
        top = metrics["top_performing_workflows"]
        assert [entry["workflow_id"] for entry in top] == [good_id, flaky_id]
        assert top[1]["success_rate"] == 50.0

    def test_metrics_for_empty_store(self, engine):
        metrics = engine.get_metrics("nobody")

        assert metrics["total_workflows"] == 0
        assert metrics["total_executions"] == 0
        assert metrics["success_rate"] == 0.0
        assert metrics["top_performing_workflows"] == []

    def test_unknown_time_range_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.get_metrics("store-1", "1y")


def test_engine_binds_trigger_callback(repository, executor, mock_scheduler):
    manager = TriggerManager(scheduler=mock_scheduler)
    engine = WorkflowEngine(repository, executor, manager, config=ExecutionConfig(workers=1))

    assert manager.callback == engine.enqueue
    assert manager.is_enabled is not None
