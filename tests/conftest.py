"""Shared fixtures for workflow engine tests."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

import pytest

from workflow_automation.automation import (
    ActionRegistry,
    ActionResult,
    BaseActionHandler,
    InMemoryExecutionRecorder,
    InMemoryWorkflowStore,
    TriggerContext,
    WorkflowEngine,
)
from workflow_automation.core.config import WorkflowDefinition


class RecordingHandler(BaseActionHandler):
    """Handler that records its calls and succeeds, fails or raises on demand."""

    def __init__(
        self,
        action_type: str,
        result: Any = None,
        error: Exception | None = None,
        failure: str | None = None,
    ) -> None:
        self.action_type = action_type
        self.result = result
        self.error = error
        self.failure = failure
        self.calls: list[tuple[dict[str, Any], TriggerContext]] = []

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        self.calls.append((dict(config), context))
        if self.error is not None:
            raise self.error
        if self.failure is not None:
            return ActionResult.failed(self.failure)
        return ActionResult.ok(self.result if self.result is not None else {"handled": self.action_type})


@pytest.fixture
def handler_class() -> type[RecordingHandler]:
    """The recording handler class, for tests that need custom instances."""
    return RecordingHandler


@pytest.fixture
def make_workflow() -> Callable[..., WorkflowDefinition]:
    """Build a WorkflowDefinition from action type names or action dicts."""

    def _make(actions: list[Any], **kwargs: Any) -> WorkflowDefinition:
        specs = [action if isinstance(action, dict) else {"type": action} for action in actions]
        kwargs.setdefault("id", "wf-1")
        return WorkflowDefinition(actions=specs, **kwargs)

    return _make


@pytest.fixture
def handlers() -> dict[str, RecordingHandler]:
    return {
        "send_email": RecordingHandler("send_email", result={"message_id": "<m1>"}),
        "create_task": RecordingHandler("create_task", result={"task_id": 1}),
        "api_call": RecordingHandler("api_call", result={"http_code": 200}),
    }


@pytest.fixture
def registry(handlers: dict[str, RecordingHandler]) -> ActionRegistry:
    return ActionRegistry(handlers)


@pytest.fixture
def recorder() -> InMemoryExecutionRecorder:
    return InMemoryExecutionRecorder()


@pytest.fixture
def build_engine(
    registry: ActionRegistry, recorder: InMemoryExecutionRecorder
) -> Callable[..., WorkflowEngine]:
    """Build an engine over the given workflows with the shared registry and recorder."""

    def _build(*workflows: WorkflowDefinition, **kwargs: Any) -> WorkflowEngine:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("recorder", recorder)
        return WorkflowEngine(store=InMemoryWorkflowStore(workflows), **kwargs)

    return _build
