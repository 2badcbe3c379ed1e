"""Action handler interface and registry.

Every action type is served by one handler implementing ``execute(config,
context)``. Handlers are looked up in an ActionRegistry, so new action types can
be added without touching the execution coordinator.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any

from ..core.exceptions import ActionConfigError, UnknownActionError
from ..core.logger import get_logger
from .context import TriggerContext

logger = get_logger("automation.actions")


class ActionType(str, Enum):
    """Built-in action types."""

    SEND_EMAIL = "send_email"
    CREATE_TASK = "create_task"
    UPDATE_RECORD = "update_record"
    GENERATE_REPORT = "generate_report"
    SEND_NOTIFICATION = "send_notification"
    API_CALL = "api_call"
    AI_ANALYSIS = "ai_analysis"


class ActionResult:
    """Result of an action execution."""

    def __init__(
        self,
        success: bool,
        data: Any = None,
        error: str | None = None,
    ) -> None:
        self.success = success
        self.data = data
        self.error = error
        self.timestamp = datetime.now().isoformat()

    @classmethod
    def ok(cls, data: Any = None) -> ActionResult:
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str, data: Any = None) -> ActionResult:
        return cls(success=False, data=data, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "timestamp": self.timestamp,
        }

    def __repr__(self) -> str:
        return f"ActionResult(success={self.success!r}, data={self.data!r}, error={self.error!r})"


class BaseActionHandler(ABC):
    """Base class for action handlers."""

    action_type: str = ""

    @abstractmethod
    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Execute the action with the given configuration.

        Args:
            config: Action configuration from the workflow definition
            context: Trigger context for the current run

        Returns:
            ActionResult with execution status and data

        Raises:
            ActionExecutionError: If the action failed
        """

    def require_keys(self, config: Mapping[str, Any], *keys: str) -> None:
        """Raise ActionConfigError naming every required key absent from config."""
        missing = [key for key in keys if config.get(key) in (None, "")]
        if missing:
            raise ActionConfigError(
                f"{self.action_type} action requires {', '.join(missing)}",
                action_type=self.action_type,
                missing_keys=missing,
            )


class ActionRegistry:
    """Maps action type identifiers to handlers."""

    def __init__(self, handlers: Mapping[str, BaseActionHandler] | None = None) -> None:
        self._handlers: dict[str, BaseActionHandler] = {}
        self._lock = threading.RLock()
        for action_type, handler in (handlers or {}).items():
            self.register(action_type, handler)

    def register(
        self,
        action_type: str | ActionType,
        handler: BaseActionHandler,
        replace: bool = False,
    ) -> None:
        """Register a handler for an action type.

        Raises:
            ValueError: If the type is already registered and ``replace`` is False
        """
        key = action_type.value if isinstance(action_type, ActionType) else action_type
        if not key:
            raise ValueError("Action type must be a non-empty string")
        with self._lock:
            if key in self._handlers and not replace:
                raise ValueError(f"Action type already registered: {key}")
            self._handlers[key] = handler
        logger.debug("Registered handler %s for action type '%s'", type(handler).__name__, key)

    def unregister(self, action_type: str) -> bool:
        """Remove a handler. Returns False if the type was not registered."""
        with self._lock:
            return self._handlers.pop(action_type, None) is not None

    def lookup(self, action_type: str) -> BaseActionHandler | None:
        """Find the handler for an action type, or None."""
        with self._lock:
            return self._handlers.get(action_type)

    def get(self, action_type: str) -> BaseActionHandler:
        """Find the handler for an action type.

        Raises:
            UnknownActionError: If no handler is registered
        """
        handler = self.lookup(action_type)
        if handler is None:
            raise UnknownActionError(action_type)
        return handler

    def action_types(self) -> list[str]:
        """Registered action types, sorted."""
        with self._lock:
            return sorted(self._handlers)

    def __contains__(self, action_type: object) -> bool:
        with self._lock:
            return action_type in self._handlers

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)


__all__ = [
    "ActionType",
    "ActionResult",
    "BaseActionHandler",
    "ActionRegistry",
]
