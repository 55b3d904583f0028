"""Workflow definitions and execution records.

Definitions (workflows, triggers, actions, filters) are pydantic models so
that malformed documents are rejected before they are persisted. Each
trigger and action carries a ``config`` whose model is chosen by the
owning object's ``type``. Execution records are plain dataclasses that
round-trip through ``to_dict``/``from_dict`` for storage.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class TriggerType(str, Enum):
    """Event sources that can start a workflow."""

    DATA_CHANGE = "data_change"
    TIME_BASED = "time_based"
    THRESHOLD = "threshold"
    EXTERNAL_EVENT = "external_event"


class ActionType(str, Enum):
    """Side effects a workflow step can perform."""

    EMAIL = "email"
    INVENTORY = "inventory"
    CUSTOMER = "customer"
    INTEGRATION = "integration"
    DATA_EXPORT = "data_export"
    CUSTOM = "custom"


class FilterOperator(str, Enum):
    """Comparison operators usable in filters and conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"


class ExecutionStatus(str, Enum):
    """Lifecycle states of a workflow execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.COMPLETED,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class ActionStatus(str, Enum):
    """Outcome of a single action within an execution."""

    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class WorkflowFilter(BaseModel):
    """A single field/operator/value comparison."""

    field: str = Field(..., min_length=1, description="Dot path into the evaluation context")
    operator: FilterOperator = Field(..., description="Comparison operator")
    value: Any = Field(default=None, description="Value to compare against")

    @model_validator(mode="after")
    def _check_membership_value(self) -> WorkflowFilter:
        if self.operator in (FilterOperator.IN, FilterOperator.NOT_IN) and not isinstance(
            self.value, list
        ):
            raise ValueError(f"'{self.operator.value}' filter value must be a list")
        return self


# ---------------------------------------------------------------------------
# Trigger configurations
# ---------------------------------------------------------------------------


class _TriggerConfigBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    filters: list[WorkflowFilter] = Field(
        default_factory=list, description="Trigger-level gate evaluated against trigger data"
    )


class DataChangeConfig(_TriggerConfigBase):
    """Fires on inserts, updates or deletes of a table."""

    table: str = Field(..., min_length=1)
    operation: Literal["insert", "update", "delete"] = "update"
    conditions: dict[str, Any] = Field(default_factory=dict)

    @field_validator("operation", mode="before")
    @classmethod
    def _lower_operation(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class TimeBasedConfig(_TriggerConfigBase):
    """Fires on a cron schedule in a timezone."""

    schedule: str = Field(..., min_length=1, description="Five-field cron expression")
    timezone: str = Field(default="UTC")


THRESHOLD_OPERATORS = {
    "gt": "gt",
    "lt": "lt",
    "eq": "eq",
    "gte": "gte",
    "lte": "lte",
    "greater_than": "gt",
    "less_than": "lt",
    "equals": "eq",
}


class ThresholdConfig(_TriggerConfigBase):
    """Fires on every poll where a metric compares true against a value."""

    metric: str = Field(..., min_length=1)
    operator: str = Field(...)
    value: float = Field(...)
    check_interval: int | None = Field(default=None, ge=1, description="Poll interval seconds")

    @field_validator("operator")
    @classmethod
    def _known_operator(cls, value: str) -> str:
        if value not in THRESHOLD_OPERATORS:
            raise ValueError(f"Unknown threshold operator: {value}")
        return THRESHOLD_OPERATORS[value]


class ExternalEventConfig(_TriggerConfigBase):
    """Fires when an inbound event with a matching type arrives."""

    event_type: str = Field(..., min_length=1)
    webhook_url: str | None = None


TriggerConfig = DataChangeConfig | TimeBasedConfig | ThresholdConfig | ExternalEventConfig

TRIGGER_CONFIG_MODELS: dict[TriggerType, type[_TriggerConfigBase]] = {
    TriggerType.DATA_CHANGE: DataChangeConfig,
    TriggerType.TIME_BASED: TimeBasedConfig,
    TriggerType.THRESHOLD: ThresholdConfig,
    TriggerType.EXTERNAL_EVENT: ExternalEventConfig,
}


# ---------------------------------------------------------------------------
# Action configurations
# ---------------------------------------------------------------------------


class _ActionConfigBase(BaseModel):
    model_config = ConfigDict(extra="allow")


class EmailConfig(_ActionConfigBase):
    template_id: str | None = None
    recipient: str | None = None
    subject: str = ""
    body: str = ""

    @model_validator(mode="after")
    def _recipient_or_template(self) -> EmailConfig:
        if not self.recipient and not self.template_id:
            raise ValueError("Email action requires recipient or template_id")
        return self


class InventoryConfig(_ActionConfigBase):
    operation: Literal["reorder", "price_update", "status_change"]
    product_ids: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)


class CustomerConfig(_ActionConfigBase):
    customer_id: str | None = None
    segment: str | None = None
    tags: list[str] = Field(default_factory=list)


class IntegrationConfig(_ActionConfigBase):
    service: Literal["slack", "discord", "webhook", "api"]
    endpoint: str | None = None
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _endpoint_required(self) -> IntegrationConfig:
        if self.service in ("webhook", "api") and not self.endpoint:
            raise ValueError(f"{self.service} integration requires an endpoint")
        return self


class DataExportConfig(_ActionConfigBase):
    format: Literal["json", "csv"]
    destination: str = "file"
    table: str | None = None


class CustomConfig(_ActionConfigBase):
    function_name: str | None = None
    script: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _function_or_script(self) -> CustomConfig:
        if not self.function_name and not self.script:
            raise ValueError("Custom action requires function_name or script")
        return self


ActionConfig = (
    EmailConfig
    | InventoryConfig
    | CustomerConfig
    | IntegrationConfig
    | DataExportConfig
    | CustomConfig
)

ACTION_CONFIG_MODELS: dict[ActionType, type[_ActionConfigBase]] = {
    ActionType.EMAIL: EmailConfig,
    ActionType.INVENTORY: InventoryConfig,
    ActionType.CUSTOMER: CustomerConfig,
    ActionType.INTEGRATION: IntegrationConfig,
    ActionType.DATA_EXPORT: DataExportConfig,
    ActionType.CUSTOM: CustomConfig,
}


def _describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = error.get("msg", "invalid value")
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts)


def _coerce_config(data: Any, models: dict[Any, type[BaseModel]], enum_type: type[Enum]) -> Any:
    """Replace a raw ``config`` mapping with the model selected by ``type``."""
    if not isinstance(data, dict):
        return data
    raw_type = data.get("type")
    try:
        kind = enum_type(raw_type)
    except ValueError:
        return data  # the enum field reports the unknown type
    config = data.get("config")
    model = models[kind]
    if isinstance(config, model):
        return data
    if isinstance(config, BaseModel):
        config = config.model_dump()
    try:
        parsed = model.model_validate(config or {})
    except PydanticValidationError as exc:
        raise ValueError(f"invalid {kind.value} config: {_describe_errors(exc)}") from None
    return {**data, "config": parsed}


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


class WorkflowTrigger(BaseModel):
    """What starts a workflow."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    type: TriggerType
    config: TriggerConfig
    enabled: bool = True

    @model_validator(mode="before")
    @classmethod
    def _select_config(cls, data: Any) -> Any:
        return _coerce_config(data, TRIGGER_CONFIG_MODELS, TriggerType)


class WorkflowAction(BaseModel):
    """One step in a workflow's action pipeline."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    type: ActionType
    config: ActionConfig
    order: int = Field(default=0, ge=0)
    conditions: list[WorkflowFilter] = Field(default_factory=list)
    halt_on_failure: bool = Field(
        default=False, description="Stop the pipeline if this action fails"
    )

    @model_validator(mode="before")
    @classmethod
    def _select_config(cls, data: Any) -> Any:
        return _coerce_config(data, ACTION_CONFIG_MODELS, ActionType)


class Workflow(BaseModel):
    """A tenant-owned automation definition."""

    id: str = Field(default_factory=new_id)
    store_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: str | None = None
    trigger: WorkflowTrigger
    actions: list[WorkflowAction] = Field(..., min_length=1)
    enabled: bool = True
    tags: list[str] = Field(default_factory=list)
    created_by: str | None = None

    run_count: int = 0
    success_count: int = 0
    error_count: int = 0
    version: int = 1
    last_run: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    def sorted_actions(self) -> list[WorkflowAction]:
        """Actions in execution order.

        ``sorted`` is stable, so actions sharing an ``order`` keep their
        position from the ``actions`` list.
        """
        return sorted(self.actions, key=lambda action: action.order)

    @property
    def success_rate(self) -> float:
        if not self.run_count:
            return 0.0
        return self.success_count / self.run_count * 100


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


def _parse_dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _format_dt(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class ActionResult:
    """Outcome of one action within an execution."""

    action_id: str
    status: ActionStatus
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    result: Any = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "action_id": self.action_id,
            "status": self.status.value,
            "started_at": _format_dt(self.started_at),
            "completed_at": _format_dt(self.completed_at),
            "result": self.result,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionResult:
        return cls(
            action_id=data["action_id"],
            status=ActionStatus(data["status"]),
            started_at=_parse_dt(data.get("started_at")) or utcnow(),
            completed_at=_parse_dt(data.get("completed_at")),
            result=data.get("result"),
            error=data.get("error"),
        )


@dataclass
class WorkflowExecution:
    """One recorded run of a workflow."""

    workflow_id: str
    trigger_data: Any = None
    id: str = field(default_factory=new_id)
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: datetime = field(default_factory=utcnow)
    completed_at: datetime | None = None
    error: str | None = None
    action_results: list[ActionResult] = field(default_factory=list)
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "trigger_data": self.trigger_data,
            "status": self.status.value,
            "started_at": _format_dt(self.started_at),
            "completed_at": _format_dt(self.completed_at),
            "error": self.error,
            "action_results": [result.to_dict() for result in self.action_results],
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowExecution:
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            trigger_data=data.get("trigger_data"),
            status=ExecutionStatus(data["status"]),
            started_at=_parse_dt(data.get("started_at")) or utcnow(),
            completed_at=_parse_dt(data.get("completed_at")),
            error=data.get("error"),
            action_results=[
                ActionResult.from_dict(item) for item in data.get("action_results", [])
            ],
            context=data.get("context") or {},
        )


__all__ = [
    "ACTION_CONFIG_MODELS",
    "ActionConfig",
    "ActionResult",
    "ActionStatus",
    "ActionType",
    "CustomConfig",
    "CustomerConfig",
    "DataChangeConfig",
    "DataExportConfig",
    "EmailConfig",
    "ExecutionStatus",
    "ExternalEventConfig",
    "FilterOperator",
    "IntegrationConfig",
    "InventoryConfig",
    "THRESHOLD_OPERATORS",
    "TRIGGER_CONFIG_MODELS",
    "ThresholdConfig",
    "TimeBasedConfig",
    "TriggerConfig",
    "TriggerType",
    "Workflow",
    "WorkflowAction",
    "WorkflowExecution",
    "WorkflowFilter",
    "WorkflowTrigger",
    "new_id",
    "utcnow",
]
