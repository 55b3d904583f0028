"""Exception hierarchy for the workflow engine."""

from __future__ import annotations


class WorkflowError(Exception):
    """Base exception for workflow engine errors."""

    pass


class ValidationError(WorkflowError):
    """Raised when a workflow, trigger or action definition is malformed."""

    def __init__(self, errors: list[str] | str, message: str | None = None) -> None:
        """Initialize the exception.

        Args:
            errors: Validation error messages
            message: Optional summary message
        """
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__(message or "Workflow validation failed: " + "; ".join(self.errors))


class TriggerRegistrationError(WorkflowError):
    """Raised when a trigger cannot be registered."""

    def __init__(self, workflow_id: str, message: str) -> None:
        """Initialize the exception.

        Args:
            workflow_id: Workflow whose trigger failed to register
            message: Description of the misconfiguration
        """
        self.workflow_id = workflow_id
        super().__init__(f"Cannot register trigger for workflow {workflow_id}: {message}")


class ActionExecutionError(WorkflowError):
    """Raised when a single action's side effect fails."""

    def __init__(self, message: str, action_id: str = "", action_type: str = "") -> None:
        """Initialize the exception.

        Args:
            message: Error message
            action_id: ID of the failing action
            action_type: Type of the failing action
        """
        self.action_id = action_id
        self.action_type = action_type
        super().__init__(message)


class ExecutionFatalError(WorkflowError):
    """Raised when the engine itself cannot continue an execution."""

    def __init__(
        self,
        message: str,
        workflow_id: str | None = None,
        execution_id: str | None = None,
        action_id: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            workflow_id: Workflow being executed
            execution_id: Execution record affected
            action_id: Action in progress when the failure happened
        """
        self.workflow_id = workflow_id
        self.execution_id = execution_id
        self.action_id = action_id
        super().__init__(message)


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow does not exist."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class TemplateNotFoundError(WorkflowError):
    """Raised when a workflow template does not exist."""

    def __init__(self, template_id: str) -> None:
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class QueueFullError(WorkflowError):
    """Raised when the execution queue is at capacity."""

    pass


class CancellationRequested(Exception):  # noqa: N818
    """Signals that an execution was cancelled between actions.

    Not a WorkflowError: cancellation is a normal terminal state.
    """

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution cancelled: {execution_id}")


__all__ = [
    "ActionExecutionError",
    "CancellationRequested",
    "ExecutionFatalError",
    "QueueFullError",
    "TemplateNotFoundError",
    "TriggerRegistrationError",
    "ValidationError",
    "WorkflowError",
    "WorkflowNotFoundError",
]
