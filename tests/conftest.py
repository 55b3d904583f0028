"""Shared fixtures for the workflow engine tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

import pytest

from store_workflows.automation.engine import WorkflowEngine
from store_workflows.automation.triggers import TriggerManager
from store_workflows.core.config import ExecutionConfig
from store_workflows.core.exceptions import ActionExecutionError
from store_workflows.persistence import StoreDataRepository, WorkflowRepository
from tests.mocks import MockScheduler


class RecordingExecutor:
    """Action executor double that records calls by action name.

    ``fail_on`` names actions that raise; ``hooks`` maps an action name to a
    callable run before the action returns.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.contexts: list[dict[str, Any]] = []
        self.fail_on: set[str] = set()
        self.hooks: dict[str, Callable[[], None]] = {}

    def execute_action(self, action: Any, context: dict[str, Any]) -> Any:
        self.calls.append(action.name)
        self.contexts.append(context)
        hook = self.hooks.get(action.name)
        if hook is not None:
            hook()
        if action.name in self.fail_on:
            raise ActionExecutionError(
                f"{action.name} exploded", action_id=action.id, action_type=action.type.value
            )
        return {"action": action.name}


@pytest.fixture
def repository():
    """In-memory workflow repository."""
    repo = WorkflowRepository()
    yield repo
    repo.close()


@pytest.fixture
def store_data():
    """In-memory store data repository."""
    repo = StoreDataRepository()
    yield repo
    repo.close()


@pytest.fixture
def mock_scheduler():
    return MockScheduler()


@pytest.fixture
def metric_provider():
    provider = MagicMock()
    provider.get_metric.return_value = 0.0
    return provider


@pytest.fixture
def trigger_manager(mock_scheduler, metric_provider):
    return TriggerManager(scheduler=mock_scheduler, metric_provider=metric_provider)


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def engine(repository, executor, trigger_manager, mock_scheduler):
    """Engine with a recording executor and a mock scheduler; workers not started."""
    engine = WorkflowEngine(
        repository,
        executor,
        trigger_manager,
        config=ExecutionConfig(workers=2, poll_interval=0.05),
        scheduler=mock_scheduler,
    )
    yield engine
    engine.stop()


def _email_action(name: str, order: int, **extra: Any) -> dict[str, Any]:
    return {
        "name": name,
        "type": "email",
        "config": {"recipient": "ops@example.com", "subject": name, "body": "{{quantity}}"},
        "order": order,
        **extra,
    }


@pytest.fixture
def make_workflow() -> Callable[..., dict[str, Any]]:
    """Factory for workflow definitions triggered by an external event.

    The default has a ``quantity < 10`` trigger filter and three email
    actions named ``first``, ``second`` and ``third``.
    """

    def factory(**overrides: Any) -> dict[str, Any]:
        definition: dict[str, Any] = {
            "name": "Low stock follow-up",
            "description": "Notify when stock is low",
            "store_id": "store-1",
            "trigger": {
                "name": "Inventory event",
                "type": "external_event",
                "config": {
                    "event_type": "inventory.updated",
                    "filters": [{"field": "quantity", "operator": "less_than", "value": 10}],
                },
            },
            "actions": [
                _email_action("first", 1),
                _email_action("second", 2),
                _email_action("third", 3),
            ],
            "enabled": True,
        }
        definition.update(overrides)
        return definition

    return factory
