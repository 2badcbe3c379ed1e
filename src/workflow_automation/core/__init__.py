"""Core modules for the workflow automation engine.

This package contains the shared functionality including:
- Configuration management and workflow definition models
- Logging utilities
- The engine's exception hierarchy
"""

from .config import (
    ActionSpec,
    AIAnalysisConfig,
    ConcurrencyConfig,
    ConditionSpec,
    EngineConfig,
    ExecutionConfig,
    HTTPClientConfig,
    LoggingConfig,
    NotificationConfig,
    SMTPConfig,
    StorageConfig,
    UpdateTargetConfig,
    WorkflowDefinition,
)
from .exceptions import (
    ActionConfigError,
    ActionExecutionError,
    ConcurrencyLimitError,
    ConfigurationError,
    DeadlineExceededError,
    DefinitionNotFoundError,
    PersistenceError,
    RecordImmutableError,
    TransportError,
    UnknownActionError,
    WorkflowEngineError,
)
from .logger import get_logger, log_exception, setup_logging

__all__ = [
    # Configuration
    "EngineConfig",
    "LoggingConfig",
    "HTTPClientConfig",
    "StorageConfig",
    "ExecutionConfig",
    "ConcurrencyConfig",
    "SMTPConfig",
    "NotificationConfig",
    "AIAnalysisConfig",
    "UpdateTargetConfig",
    # Workflow definitions
    "WorkflowDefinition",
    "ActionSpec",
    "ConditionSpec",
    # Exceptions
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
    # Logging
    "get_logger",
    "setup_logging",
    "log_exception",
]
