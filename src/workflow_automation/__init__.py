"""Workflow Automation Engine.

Runs stored workflows against trigger payloads with:
- Ordered action execution with a fail-fast policy
- A pluggable action handler registry (email, tasks, records, reports,
  notifications, HTTP calls, AI analysis)
- Condition gating on trigger payloads
- Durable execution records (in-memory or SQL)

Example:
    ```python
    from workflow_automation import EngineConfig, WorkflowEngine

    engine = WorkflowEngine.from_config(EngineConfig.from_yaml("engine.yaml"))
    result = engine.fire("large-order", {"amount": 250, "customer": "ACME"})
    ```
"""

from importlib.metadata import PackageNotFoundError, version

from .automation import (
    ActionRegistry,
    ActionResult,
    BaseActionHandler,
    ConditionEvaluator,
    ExecutionResult,
    ExecutionStatus,
    InMemoryWorkflowStore,
    TriggerContext,
    WorkflowEngine,
    create_default_registry,
)
from .core import (
    EngineConfig,
    WorkflowDefinition,
    WorkflowEngineError,
    get_logger,
    setup_logging,
)

__all__ = [
    "__version__",
    "WorkflowEngine",
    "EngineConfig",
    "WorkflowDefinition",
    "WorkflowEngineError",
    "ActionRegistry",
    "ActionResult",
    "BaseActionHandler",
    "ConditionEvaluator",
    "ExecutionResult",
    "ExecutionStatus",
    "InMemoryWorkflowStore",
    "TriggerContext",
    "create_default_registry",
    "get_logger",
    "setup_logging",
]

try:  # pragma: no cover - best-effort during development
    __version__ = version("workflow-automation")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
