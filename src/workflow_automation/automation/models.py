"""Execution record models.

An ExecutionRecord is the append-only log of one workflow run. It is created in
the RUNNING state before any action executes and becomes immutable once it
reaches SUCCEEDED or FAILED.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


@dataclass(frozen=True)
class ActionOutcome:
    """Recorded result of one action within a run."""

    index: int
    action_type: str
    success: bool
    result: Any = None
    error: str | None = None
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "index": self.index,
            "action_type": self.action_type,
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionOutcome:
        """Create from dictionary."""
        return cls(
            index=int(data.get("index", 0)),
            action_type=data.get("action_type", ""),
            success=bool(data.get("success")),
            result=data.get("result"),
            error=data.get("error"),
            duration_ms=int(data.get("duration_ms") or 0),
        )


@dataclass
class ExecutionRecord:
    """Durable log of one workflow run."""

    id: str
    workflow_id: str
    trigger_data: Any = None
    scope_id: str | None = None
    triggered_by: str | None = None
    status: ExecutionStatus = ExecutionStatus.RUNNING
    started_at: str | None = None
    completed_at: str | None = None
    execution_time_ms: int | None = None
    error_message: str | None = None
    outcomes: list[ActionOutcome] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "scope_id": self.scope_id,
            "triggered_by": self.triggered_by,
            "trigger_data": self.trigger_data,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "execution_time_ms": self.execution_time_ms,
            "error_message": self.error_message,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Result of a workflow run as returned to the caller."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus
    outcomes: tuple[ActionOutcome, ...] = ()
    execution_time_ms: int = 0
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status is ExecutionStatus.SUCCEEDED

    @property
    def failed_outcome(self) -> ActionOutcome | None:
        """First failed action outcome, if any."""
        for outcome in self.outcomes:
            if not outcome.success:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "execution_id": self.execution_id,
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "success": self.success,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "execution_time_ms": self.execution_time_ms,
            "error": self.error,
        }
