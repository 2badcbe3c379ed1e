"""Trigger context passed to every action handler.

Handlers receive everything they need about the run through this value: the
trigger payload, who triggered it, the owning scope and the run deadline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..core.exceptions import DeadlineExceededError


class TriggerType(str, Enum):
    """Supported trigger types."""

    SCHEDULE = "schedule"
    EVENT = "event"
    WEBHOOK = "webhook"
    API = "api"
    CONDITION = "condition"
    MANUAL = "manual"


@dataclass(frozen=True)
class TriggerContext:
    """Context passed to action handlers for one run.

    ``deadline`` is a ``time.monotonic()`` timestamp; ``None`` means the run has
    no deadline.
    """

    payload: dict[str, Any] = field(default_factory=dict)
    actor: str | None = None
    scope_id: str | None = None
    workflow_id: str = ""
    execution_id: str = ""
    ai_model: str = "auto"
    trigger_type: TriggerType = TriggerType.MANUAL
    triggered_at: str = field(default_factory=lambda: datetime.now().isoformat())
    deadline: float | None = None

    @classmethod
    def with_timeout(cls, timeout: float | None, **kwargs: Any) -> TriggerContext:
        """Create a context whose deadline is ``timeout`` seconds from now."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(deadline=deadline, **kwargs)

    def remaining(self) -> float | None:
        """Seconds left before the deadline (never negative), or None without one."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        """Whether the deadline has passed."""
        return self.deadline is not None and time.monotonic() >= self.deadline

    def check_deadline(self, action_type: str | None = None) -> None:
        """Raise DeadlineExceededError if the deadline has passed."""
        if self.expired:
            raise DeadlineExceededError(
                f"Execution deadline exceeded before {action_type or 'action'}",
                action_type=action_type,
            )

    def timeout_for(self, default: float | None) -> float | None:
        """Pick the tighter of ``default`` and the remaining deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        if default is None:
            return remaining
        return min(default, remaining)
