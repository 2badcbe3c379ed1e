"""Workflow execution.

This module provides:
- WorkflowEngine: runs workflows and finalizes their execution records
- ActionRegistry and the built-in action handlers
- ConditionEvaluator for gating workflows on trigger payloads
- Execution recorders (in-memory and SQLAlchemy)
- Workflow stores
"""

from .actions import ActionRegistry, ActionResult, ActionType, BaseActionHandler
from .conditions import ConditionEvaluator, ConditionOperator, extract_field
from .context import TriggerContext, TriggerType
from .engine import WorkflowEngine
from .handlers import (
    AIAnalysisHandler,
    ApiCallHandler,
    BuiltinHandler,
    CreateTaskHandler,
    GenerateReportHandler,
    SendEmailHandler,
    SendNotificationHandler,
    UpdateRecordHandler,
    create_default_registry,
)
from .models import ActionOutcome, ExecutionRecord, ExecutionResult, ExecutionStatus
from .recorder import ExecutionRecorder, InMemoryExecutionRecorder, SQLExecutionRecorder
from .store import InMemoryWorkflowStore, WorkflowStore

__all__ = [
    # Engine
    "WorkflowEngine",
    # Actions
    "ActionType",
    "ActionResult",
    "BaseActionHandler",
    "ActionRegistry",
    "BuiltinHandler",
    "SendEmailHandler",
    "CreateTaskHandler",
    "UpdateRecordHandler",
    "GenerateReportHandler",
    "SendNotificationHandler",
    "ApiCallHandler",
    "AIAnalysisHandler",
    "create_default_registry",
    # Conditions
    "ConditionOperator",
    "ConditionEvaluator",
    "extract_field",
    # Context
    "TriggerType",
    "TriggerContext",
    # Records
    "ExecutionStatus",
    "ActionOutcome",
    "ExecutionRecord",
    "ExecutionResult",
    "ExecutionRecorder",
    "InMemoryExecutionRecorder",
    "SQLExecutionRecorder",
    # Stores
    "WorkflowStore",
    "InMemoryWorkflowStore",
]
