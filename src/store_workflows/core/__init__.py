"""Core configuration, logging and error types."""

from .config import (
    EngineSettings,
    ExecutionConfig,
    ExportConfig,
    HTTPClientConfig,
    IntegrationConfig,
    LoggingConfig,
    PersistenceConfig,
    SchedulerConfig,
    ServerConfig,
)
from .exceptions import (
    ActionExecutionError,
    CancellationRequested,
    ExecutionFatalError,
    QueueFullError,
    TemplateNotFoundError,
    TriggerRegistrationError,
    ValidationError,
    WorkflowError,
    WorkflowNotFoundError,
)
from .logger import get_logger, log_exception, setup_logging

__all__ = [
    "ActionExecutionError",
    "CancellationRequested",
    "EngineSettings",
    "ExecutionConfig",
    "ExecutionFatalError",
    "ExportConfig",
    "HTTPClientConfig",
    "IntegrationConfig",
    "LoggingConfig",
    "PersistenceConfig",
    "QueueFullError",
    "SchedulerConfig",
    "ServerConfig",
    "TemplateNotFoundError",
    "TriggerRegistrationError",
    "ValidationError",
    "WorkflowError",
    "WorkflowNotFoundError",
    "get_logger",
    "log_exception",
    "setup_logging",
]
