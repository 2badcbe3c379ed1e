"""Workflow definition stores."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable

from ..core.config import EngineConfig, WorkflowDefinition
from ..core.logger import get_logger

logger = get_logger("automation.store")


class WorkflowStore(ABC):
    """Supplies workflow definitions to the engine."""

    @abstractmethod
    def get(self, workflow_id: str, scope_id: str | None = None) -> WorkflowDefinition | None:
        """Return the workflow, or None when it is missing or owned by another scope."""

    @abstractmethod
    def list_workflows(self, scope_id: str | None = None) -> list[WorkflowDefinition]:
        """List workflows, optionally restricted to one scope."""


class InMemoryWorkflowStore(WorkflowStore):
    """Thread-safe store holding definitions in memory."""

    def __init__(self, workflows: Iterable[WorkflowDefinition] | None = None) -> None:
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._lock = threading.Lock()
        for workflow in workflows or []:
            self.add(workflow)

    @classmethod
    def from_config(cls, config: EngineConfig) -> InMemoryWorkflowStore:
        return cls(config.workflows)

    def add(self, workflow: WorkflowDefinition, replace: bool = False) -> None:
        """Add a workflow.

        Raises:
            ValueError: If the id is taken and ``replace`` is False
        """
        with self._lock:
            if workflow.id in self._workflows and not replace:
                raise ValueError(f"Workflow already exists: {workflow.id}")
            self._workflows[workflow.id] = workflow
        logger.debug("Stored workflow %s", workflow.id)

    def remove(self, workflow_id: str) -> bool:
        with self._lock:
            return self._workflows.pop(workflow_id, None) is not None

    def get(self, workflow_id: str, scope_id: str | None = None) -> WorkflowDefinition | None:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            return None
        if scope_id is not None and workflow.scope_id != scope_id:
            return None
        return workflow

    def list_workflows(self, scope_id: str | None = None) -> list[WorkflowDefinition]:
        with self._lock:
            workflows = list(self._workflows.values())
        if scope_id is None:
            return workflows
        return [workflow for workflow in workflows if workflow.scope_id == scope_id]

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows

    def __len__(self) -> int:
        return len(self._workflows)


__all__ = ["WorkflowStore", "InMemoryWorkflowStore"]
