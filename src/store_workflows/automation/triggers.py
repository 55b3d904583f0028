"""Trigger manager bridging event sources to workflow executions.

Every source (table change feed, cron schedule, metric poller, inbound
event) is wrapped in a trigger object bound to one workflow. When a
trigger matches it invokes the manager's callback with
``(workflow_id, trigger_data)``; what happens next is up to the engine.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

from ..core.exceptions import TriggerRegistrationError
from ..core.logger import get_logger
from ..scheduler import build_cron_trigger
from .models import (
    DataChangeConfig,
    ExternalEventConfig,
    ThresholdConfig,
    TimeBasedConfig,
    TriggerType,
    WorkflowTrigger,
    utcnow,
)
from .rules import evaluate_filters

if TYPE_CHECKING:
    from ..scheduler import TaskScheduler

logger = get_logger("automation.triggers")

TriggerCallback = Callable[[str, dict[str, Any]], None]


class MetricProvider(Protocol):
    """Source of numeric store metrics for threshold triggers."""

    def get_metric(self, metric: str, store_id: str | None) -> float: ...


def compare_threshold(current: float, operator: str, target: float) -> bool:
    if operator == "gt":
        return current > target
    if operator == "lt":
        return current < target
    if operator == "eq":
        return current == target
    if operator == "gte":
        return current >= target
    if operator == "lte":
        return current <= target
    return False


class BaseTrigger(ABC):
    """A trigger registration for one workflow."""

    trigger_type: TriggerType

    def __init__(
        self,
        workflow_id: str,
        definition: WorkflowTrigger,
        callback: TriggerCallback,
        store_id: str | None = None,
    ) -> None:
        self.workflow_id = workflow_id
        self.definition = definition
        self.config: Any = definition.config
        self.callback = callback
        self.store_id = store_id
        self.active = False
        self._last_triggered: datetime | None = None

    @abstractmethod
    def start(self) -> None:
        """Begin listening or scheduling."""

    @abstractmethod
    def stop(self) -> None:
        """Stop listening or scheduling."""

    def fire(self, trigger_data: dict[str, Any]) -> bool:
        """Invoke the callback if this registration is live.

        Returns:
            True if the callback was invoked
        """
        if not self.active or not self.definition.enabled:
            logger.debug("Trigger inactive for workflow: %s", self.workflow_id)
            return False

        self._last_triggered = utcnow()
        logger.debug("Trigger fired for workflow: %s", self.workflow_id)

        try:
            self.callback(self.workflow_id, trigger_data)
        except Exception as e:
            logger.error(
                "Trigger callback failed for workflow %s: %s",
                self.workflow_id,
                e,
                exc_info=True,
            )
            return False
        return True

    @property
    def last_triggered(self) -> datetime | None:
        return self._last_triggered


class DataChangeTrigger(BaseTrigger):
    """Matches table change notifications."""

    trigger_type = TriggerType.DATA_CHANGE
    config: DataChangeConfig

    def start(self) -> None:
        self.active = True
        logger.debug(
            "Data change trigger registered for workflow %s (%s on %s)",
            self.workflow_id,
            self.config.operation,
            self.config.table,
        )

    def stop(self) -> None:
        self.active = False

    def matches(
        self,
        table: str,
        operation: str,
        new_record: Mapping[str, Any] | None,
        old_record: Mapping[str, Any] | None,
        store_id: str | None = None,
    ) -> bool:
        if table != self.config.table or operation.lower() != self.config.operation:
            return False
        if store_id is not None and self.store_id is not None and store_id != self.store_id:
            return False
        record = old_record if operation.lower() == "delete" else new_record
        record = record or {}
        return all(record.get(key) == value for key, value in self.config.conditions.items())


class ScheduleTrigger(BaseTrigger):
    """Cron schedule evaluated in the trigger's timezone."""

    trigger_type = TriggerType.TIME_BASED
    config: TimeBasedConfig

    def __init__(
        self,
        workflow_id: str,
        definition: WorkflowTrigger,
        callback: TriggerCallback,
        store_id: str | None = None,
        scheduler: TaskScheduler | None = None,
        is_current: Callable[[BaseTrigger], bool] | None = None,
    ) -> None:
        super().__init__(workflow_id, definition, callback, store_id)
        self.scheduler = scheduler
        self.is_current = is_current
        self._job_id: str | None = None

    def start(self) -> None:
        """Register the cron job with the scheduler.

        Raises:
            TriggerRegistrationError: If the scheduler rejects the schedule
        """
        if not self.scheduler:
            raise TriggerRegistrationError(self.workflow_id, "no scheduler available")

        job_id = f"workflow.{self.workflow_id}.{id(self):x}"
        try:
            self._job_id = self.scheduler.add_job(
                self._on_schedule,
                trigger="cron",
                job_id=job_id,
                replace_existing=True,
                crontab=self.config.schedule,
                timezone=self.config.timezone,
            )
        except ValueError as e:
            raise TriggerRegistrationError(self.workflow_id, str(e)) from e
        self.active = True
        logger.info(
            "Registered schedule '%s' (%s) for workflow %s",
            self.config.schedule,
            self.config.timezone,
            self.workflow_id,
        )

    def stop(self) -> None:
        self.active = False
        if self._job_id and self.scheduler:
            try:
                self.scheduler.remove_job(self._job_id)
                logger.debug("Removed schedule job: %s", self._job_id)
            except Exception as e:
                logger.debug("Failed to remove job %s: %s", self._job_id, e)
            finally:
                self._job_id = None

    def _on_schedule(self) -> None:
        # A tick can race with an update or delete; only the live
        # registration of a still-enabled workflow may fire.
        if self.is_current is not None and not self.is_current(self):
            logger.debug("Skipping stale schedule tick for workflow %s", self.workflow_id)
            return
        self.fire(
            {
                "scheduled_time": utcnow().isoformat(),
                "schedule": self.config.schedule,
                "timezone": self.config.timezone,
            }
        )

    def get_next_run_time(self) -> datetime | None:
        if self._job_id and self.scheduler:
            job = self.scheduler.get_job(self._job_id)
            if job:
                return job.next_run_time
        return None


class ThresholdTrigger(BaseTrigger):
    """Periodically polls a metric and fires on every poll that matches."""

    trigger_type = TriggerType.THRESHOLD
    config: ThresholdConfig

    def __init__(
        self,
        workflow_id: str,
        definition: WorkflowTrigger,
        callback: TriggerCallback,
        store_id: str | None = None,
        scheduler: TaskScheduler | None = None,
        metric_provider: MetricProvider | None = None,
        poll_seconds: int = 300,
        is_current: Callable[[BaseTrigger], bool] | None = None,
    ) -> None:
        super().__init__(workflow_id, definition, callback, store_id)
        self.scheduler = scheduler
        self.metric_provider = metric_provider
        self.poll_seconds = self.config.check_interval or poll_seconds
        self.is_current = is_current
        self._job_id: str | None = None

    def start(self) -> None:
        if not self.metric_provider:
            raise TriggerRegistrationError(self.workflow_id, "no metric provider available")
        if not self.scheduler:
            raise TriggerRegistrationError(self.workflow_id, "no scheduler available")

        job_id = f"workflow.{self.workflow_id}.{id(self):x}"
        try:
            self._job_id = self.scheduler.add_job(
                self.poll,
                trigger="interval",
                job_id=job_id,
                replace_existing=True,
                seconds=self.poll_seconds,
            )
        except ValueError as e:
            raise TriggerRegistrationError(self.workflow_id, str(e)) from e
        self.active = True
        logger.info(
            "Registered threshold poll on '%s' every %ss for workflow %s",
            self.config.metric,
            self.poll_seconds,
            self.workflow_id,
        )

    def stop(self) -> None:
        self.active = False
        if self._job_id and self.scheduler:
            try:
                self.scheduler.remove_job(self._job_id)
            except Exception as e:
                logger.debug("Failed to remove job %s: %s", self._job_id, e)
            finally:
                self._job_id = None

    def poll(self) -> bool:
        """Read the metric once and fire if the comparison holds."""
        if self.is_current is not None and not self.is_current(self):
            return False
        if not self.metric_provider:
            return False
        try:
            current = float(self.metric_provider.get_metric(self.config.metric, self.store_id))
        except Exception as e:
            logger.error(
                "Failed to read metric %s for workflow %s: %s",
                self.config.metric,
                self.workflow_id,
                e,
                exc_info=True,
            )
            return False

        if not compare_threshold(current, self.config.operator, self.config.value):
            return False
        return self.fire(
            {
                "metric": self.config.metric,
                "value": current,
                "threshold": self.config.value,
                "operator": self.config.operator,
                "timestamp": utcnow().isoformat(),
            }
        )


class ExternalEventTrigger(BaseTrigger):
    """Matches inbound events by type and trigger filters."""

    trigger_type = TriggerType.EXTERNAL_EVENT
    config: ExternalEventConfig

    def start(self) -> None:
        self.active = True
        logger.debug(
            "External event trigger registered for workflow %s (type: %s)",
            self.workflow_id,
            self.config.event_type,
        )

    def stop(self) -> None:
        self.active = False

    def build_trigger_data(self, event_type: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {"event_type": event_type, **payload}

    def matches(self, event_type: str, payload: Mapping[str, Any]) -> bool:
        if event_type != self.config.event_type:
            return False
        return evaluate_filters(self.config.filters, self.build_trigger_data(event_type, payload))


class TriggerManager:
    """Registry of live trigger registrations, one per workflow."""

    def __init__(
        self,
        callback: TriggerCallback | None = None,
        scheduler: TaskScheduler | None = None,
        metric_provider: MetricProvider | None = None,
        is_enabled: Callable[[str], bool] | None = None,
        poll_seconds: int = 300,
    ) -> None:
        """Initialize the manager.

        Args:
            callback: Invoked as ``callback(workflow_id, trigger_data)``
            scheduler: Scheduler for time-based and threshold triggers
            metric_provider: Metric source for threshold triggers
            is_enabled: Re-checks a workflow's enabled flag on each tick
            poll_seconds: Default threshold polling interval
        """
        self.callback = callback
        self.scheduler = scheduler
        self.metric_provider = metric_provider
        self.is_enabled = is_enabled
        self.poll_seconds = poll_seconds
        self._registrations: dict[str, BaseTrigger] = {}
        self._lock = threading.Lock()

    def set_callback(self, callback: TriggerCallback) -> None:
        self.callback = callback

    def _dispatch(self, workflow_id: str, trigger_data: dict[str, Any]) -> None:
        if self.callback is None:
            logger.warning("No trigger callback set; dropping event for %s", workflow_id)
            return
        self.callback(workflow_id, trigger_data)

    def _is_current(self, registration: BaseTrigger) -> bool:
        with self._lock:
            current = self._registrations.get(registration.workflow_id)
        if current is not registration:
            return False
        if self.is_enabled is not None and not self.is_enabled(registration.workflow_id):
            return False
        return True

    def _build(
        self, workflow_id: str, trigger: WorkflowTrigger, store_id: str | None
    ) -> BaseTrigger:
        if trigger.type == TriggerType.DATA_CHANGE:
            return DataChangeTrigger(workflow_id, trigger, self._dispatch, store_id)
        if trigger.type == TriggerType.TIME_BASED:
            return ScheduleTrigger(
                workflow_id,
                trigger,
                self._dispatch,
                store_id,
                scheduler=self.scheduler,
                is_current=self._is_current,
            )
        if trigger.type == TriggerType.THRESHOLD:
            return ThresholdTrigger(
                workflow_id,
                trigger,
                self._dispatch,
                store_id,
                scheduler=self.scheduler,
                metric_provider=self.metric_provider,
                poll_seconds=self.poll_seconds,
                is_current=self._is_current,
            )
        if trigger.type == TriggerType.EXTERNAL_EVENT:
            return ExternalEventTrigger(workflow_id, trigger, self._dispatch, store_id)
        raise TriggerRegistrationError(workflow_id, f"unknown trigger type: {trigger.type}")

    def validate_trigger(self, trigger: WorkflowTrigger) -> list[str]:
        """Check that a trigger could be registered, without registering it."""
        errors: list[str] = []
        if trigger.type == TriggerType.TIME_BASED:
            try:
                build_cron_trigger(trigger.config.schedule, trigger.config.timezone)
            except ValueError as e:
                errors.append(str(e))
            if self.scheduler is None:
                errors.append("no scheduler available")
        elif trigger.type == TriggerType.THRESHOLD:
            if self.scheduler is None:
                errors.append("no scheduler available")
            if self.metric_provider is None:
                errors.append("no metric provider available")
        return errors

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_trigger(
        self, workflow_id: str, trigger: WorkflowTrigger, store_id: str | None = None
    ) -> BaseTrigger:
        """Register or replace the trigger for a workflow.

        The new registration is started before the old one is stopped and
        both happen under the manager lock, so events never observe two
        registrations, or none, for the workflow.

        Raises:
            TriggerRegistrationError: If the trigger is misconfigured
        """
        errors = self.validate_trigger(trigger)
        if errors:
            raise TriggerRegistrationError(workflow_id, "; ".join(errors))

        registration = self._build(workflow_id, trigger, store_id)
        with self._lock:
            registration.start()
            previous = self._registrations.get(workflow_id)
            self._registrations[workflow_id] = registration
            if previous is not None:
                previous.stop()

        logger.info(
            "%s %s trigger for workflow: %s",
            "Replaced" if previous else "Registered",
            trigger.type.value,
            workflow_id,
        )
        return registration

    def unregister_trigger(self, workflow_id: str) -> bool:
        """Remove a workflow's trigger; a no-op if none is registered.

        Returns:
            True if a registration was removed
        """
        with self._lock:
            registration = self._registrations.pop(workflow_id, None)
            if registration is None:
                return False
            registration.stop()
        logger.info("Unregistered trigger for workflow: %s", workflow_id)
        return True

    def is_registered(self, workflow_id: str) -> bool:
        with self._lock:
            return workflow_id in self._registrations

    def get_registration(self, workflow_id: str) -> BaseTrigger | None:
        with self._lock:
            return self._registrations.get(workflow_id)

    def registered_ids(self) -> list[str]:
        with self._lock:
            return list(self._registrations)

    def _snapshot(self, trigger_cls: type[BaseTrigger]) -> list[Any]:
        with self._lock:
            return [reg for reg in self._registrations.values() if isinstance(reg, trigger_cls)]

    # ------------------------------------------------------------------
    # Event ingress
    # ------------------------------------------------------------------

    def notify_data_change(
        self,
        table: str,
        operation: str,
        new_record: Mapping[str, Any] | None = None,
        old_record: Mapping[str, Any] | None = None,
        store_id: str | None = None,
    ) -> list[str]:
        """Deliver a table change to matching data change triggers.

        Returns:
            IDs of workflows that were triggered
        """
        fired: list[str] = []
        trigger_data = {
            "table": table,
            "operation": operation.lower(),
            "new_record": dict(new_record) if new_record else None,
            "old_record": dict(old_record) if old_record else None,
            "store_id": store_id,
            "timestamp": utcnow().isoformat(),
        }
        for registration in self._snapshot(DataChangeTrigger):
            if registration.matches(table, operation, new_record, old_record, store_id):
                if registration.fire(dict(trigger_data)):
                    fired.append(registration.workflow_id)
        return fired

    def handle_external_event(
        self, event_type: str, payload: Mapping[str, Any] | None = None
    ) -> list[str]:
        """Deliver an inbound event to matching external event triggers.

        Returns:
            IDs of workflows that were triggered
        """
        payload = payload or {}
        fired: list[str] = []
        for registration in self._snapshot(ExternalEventTrigger):
            if registration.matches(event_type, payload):
                if registration.fire(registration.build_trigger_data(event_type, payload)):
                    fired.append(registration.workflow_id)
        if not fired:
            logger.debug("No workflows matched external event: %s", event_type)
        return fired

    def poll_threshold(self, workflow_id: str) -> bool:
        """Run one poll of a workflow's threshold trigger immediately."""
        registration = self.get_registration(workflow_id)
        if not isinstance(registration, ThresholdTrigger):
            return False
        return registration.poll()

    def shutdown(self) -> None:
        with self._lock:
            registrations = list(self._registrations.values())
            self._registrations.clear()
        for registration in registrations:
            registration.stop()
        logger.info("Trigger manager stopped (%d registrations)", len(registrations))


__all__ = [
    "BaseTrigger",
    "DataChangeTrigger",
    "ExternalEventTrigger",
    "MetricProvider",
    "ScheduleTrigger",
    "ThresholdTrigger",
    "TriggerCallback",
    "TriggerManager",
    "compare_threshold",
]
