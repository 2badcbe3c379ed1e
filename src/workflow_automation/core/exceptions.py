"""Exception hierarchy for the workflow automation engine."""

from __future__ import annotations


class WorkflowEngineError(Exception):
    """Base exception for workflow engine errors."""

    pass


class DefinitionNotFoundError(WorkflowEngineError):
    """Raised when a workflow is missing or inactive."""

    def __init__(self, workflow_id: str, scope_id: str | None = None) -> None:
        """Initialize the exception.

        Args:
            workflow_id: ID of the requested workflow
            scope_id: Scope the lookup was restricted to, if any
        """
        self.workflow_id = workflow_id
        self.scope_id = scope_id
        super().__init__(f"Workflow not found or inactive: {workflow_id}")


class UnknownActionError(WorkflowEngineError):
    """Raised when no handler is registered for an action type."""

    def __init__(self, action_type: str) -> None:
        self.action_type = action_type
        super().__init__(f"unknown action type: {action_type}")


class ActionExecutionError(WorkflowEngineError):
    """Raised by action handlers to report a failed action."""

    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            action_type: Type of the action that failed
            original_error: Original exception that caused the failure
        """
        self.action_type = action_type
        self.original_error = original_error
        super().__init__(message)


class ActionConfigError(ActionExecutionError):
    """Raised when an action config is missing required keys or holds invalid values."""

    def __init__(
        self,
        message: str,
        action_type: str | None = None,
        missing_keys: list[str] | None = None,
    ) -> None:
        self.missing_keys = missing_keys or []
        super().__init__(message, action_type=action_type)


class TransportError(ActionExecutionError):
    """Raised when an outbound call produced no response at all."""

    pass


class DeadlineExceededError(ActionExecutionError):
    """Raised when a run's deadline has passed."""

    pass


class PersistenceError(WorkflowEngineError):
    """Raised when the execution recorder cannot read or write a record."""

    def __init__(self, message: str, execution_id: str | None = None) -> None:
        self.execution_id = execution_id
        super().__init__(message)


class RecordImmutableError(PersistenceError):
    """Raised when a write targets an execution record that is already terminal."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(f"Execution record is already finalized: {execution_id}", execution_id)


class ConcurrencyLimitError(WorkflowEngineError):
    """Raised when a workflow has no free concurrency slot."""

    def __init__(self, workflow_id: str, limit: int) -> None:
        self.workflow_id = workflow_id
        self.limit = limit
        super().__init__(f"Workflow {workflow_id} already has {limit} run(s) in progress")


class ConfigurationError(WorkflowEngineError):
    """Raised when engine configuration is invalid."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Error message
            config_key: Configuration key that is invalid
        """
        self.config_key = config_key
        super().__init__(message)


__all__ = [
    "WorkflowEngineError",
    "DefinitionNotFoundError",
    "UnknownActionError",
    "ActionExecutionError",
    "ActionConfigError",
    "TransportError",
    "DeadlineExceededError",
    "PersistenceError",
    "RecordImmutableError",
    "ConcurrencyLimitError",
    "ConfigurationError",
]
