"""Workflow automation for store events.

This module provides:
- WorkflowEngine: CRUD, trigger lifecycle, queueing and execution
- TriggerManager: data change, schedule, threshold and external event triggers
- ActionExecutor: email, inventory, customer, integration, export and custom actions
- WorkflowBuilder: validation and template instantiation
"""

# models must load first: persistence imports it while this package initializes
from .models import (
    ActionResult,
    ActionStatus,
    ActionType,
    ExecutionStatus,
    FilterOperator,
    TriggerType,
    Workflow,
    WorkflowAction,
    WorkflowExecution,
    WorkflowFilter,
    WorkflowTrigger,
)
from .rules import FILTER_PRESETS, evaluate_filter, evaluate_filters, get_preset
from .variables import VariableResolver, substitute
from .triggers import (
    BaseTrigger,
    DataChangeTrigger,
    ExternalEventTrigger,
    ScheduleTrigger,
    ThresholdTrigger,
    TriggerManager,
)
from .collaborators import (
    FileExportSink,
    FunctionRegistry,
    HTTPIntegrationDispatcher,
    LoggingEmailSender,
    StoreMetrics,
    register_builtin_functions,
)
from .actions import (
    ActionExecutor,
    BaseActionExecutor,
    CustomActionExecutor,
    CustomerActionExecutor,
    DataExportActionExecutor,
    EmailActionExecutor,
    IntegrationActionExecutor,
    InventoryActionExecutor,
)
from .templates import (
    TemplateVariable,
    WorkflowTemplate,
    WorkflowTemplateRegistry,
    create_default_template_registry,
)
from .builder import ValidationResult, WorkflowBuilder
from .queue import ExecutionQueue, QueuedExecution
from .engine import CancellationToken, WorkflowEngine

__all__ = [
    # Engine
    "CancellationToken",
    "ExecutionQueue",
    "QueuedExecution",
    "WorkflowEngine",
    # Models
    "ActionResult",
    "ActionStatus",
    "ActionType",
    "ExecutionStatus",
    "FilterOperator",
    "TriggerType",
    "Workflow",
    "WorkflowAction",
    "WorkflowExecution",
    "WorkflowFilter",
    "WorkflowTrigger",
    # Rules and variables
    "FILTER_PRESETS",
    "VariableResolver",
    "evaluate_filter",
    "evaluate_filters",
    "get_preset",
    "substitute",
    # Triggers
    "BaseTrigger",
    "DataChangeTrigger",
    "ExternalEventTrigger",
    "ScheduleTrigger",
    "ThresholdTrigger",
    "TriggerManager",
    # Actions
    "ActionExecutor",
    "BaseActionExecutor",
    "CustomActionExecutor",
    "CustomerActionExecutor",
    "DataExportActionExecutor",
    "EmailActionExecutor",
    "FileExportSink",
    "FunctionRegistry",
    "HTTPIntegrationDispatcher",
    "IntegrationActionExecutor",
    "InventoryActionExecutor",
    "LoggingEmailSender",
    "StoreMetrics",
    "register_builtin_functions",
    # Builder and templates
    "TemplateVariable",
    "ValidationResult",
    "WorkflowBuilder",
    "WorkflowTemplate",
    "WorkflowTemplateRegistry",
    "create_default_template_registry",
]
