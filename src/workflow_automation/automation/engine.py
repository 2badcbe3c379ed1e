"""Workflow execution engine.

WorkflowEngine runs one workflow at a time on the calling thread:
- loads the definition from a WorkflowStore
- optionally gates on the workflow's conditions (``fire``)
- writes a RUNNING execution record before the first action
- dispatches each action to its handler through the ActionRegistry
- applies the fail-fast policy and the run deadline
- finalizes the record on every exit path
"""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import httpx

from ..core.config import (
    ActionSpec,
    ConcurrencyConfig,
    EngineConfig,
    ExecutionConfig,
    WorkflowDefinition,
)
from ..core.exceptions import (
    ActionExecutionError,
    ConcurrencyLimitError,
    ConfigurationError,
    DefinitionNotFoundError,
    PersistenceError,
    UnknownActionError,
)
from ..core.logger import get_logger, log_exception
from ..services.ai import AIAnalyzer, PydanticAIAnalyzer
from ..services.email import EmailSender, SMTPEmailSender
from ..services.notifications import Notifier, create_notifier
from ..services.records import InMemoryRecordStore, RecordStore, UpdateTargetRegistry
from ..services.reports import ReportRegistry
from .actions import ActionRegistry, ActionResult, BaseActionHandler
from .conditions import ConditionEvaluator
from .context import TriggerContext, TriggerType
from .handlers import create_default_registry
from .models import ActionOutcome, ExecutionResult, ExecutionStatus
from .recorder import ExecutionRecorder, InMemoryExecutionRecorder, SQLExecutionRecorder
from .store import InMemoryWorkflowStore, WorkflowStore

logger = get_logger("automation.engine")


def _elapsed_ms(started: float) -> int:
    return max(0, int(round((time.perf_counter() - started) * 1000)))


class WorkflowEngine:
    """Coordinates workflow runs.

    Example:
        ```python
        engine = WorkflowEngine.from_config(EngineConfig.from_yaml("engine.yaml"))
        result = engine.run("order-followup", {"order_id": 42}, actor="7")
        if not result.success:
            print(result.failed_outcome)
        ```
    """

    def __init__(
        self,
        store: WorkflowStore,
        registry: ActionRegistry,
        recorder: ExecutionRecorder | None = None,
        evaluator: ConditionEvaluator | None = None,
        execution: ExecutionConfig | None = None,
        concurrency: ConcurrencyConfig | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Source of workflow definitions
            registry: Handlers keyed by action type
            recorder: Execution log (defaults to an in-memory recorder)
            evaluator: Condition evaluator used by ``fire``
            execution: Deadline and persistence settings
            concurrency: Per-workflow concurrency policy
        """
        self.store = store
        self.registry = registry
        self.recorder = recorder if recorder is not None else InMemoryExecutionRecorder()
        self.evaluator = evaluator if evaluator is not None else ConditionEvaluator()
        self.execution = execution or ExecutionConfig()
        self.concurrency = concurrency or ConcurrencyConfig()
        self._semaphores: dict[str, threading.BoundedSemaphore] = {}
        self._semaphores_lock = threading.Lock()
        self._closeables: list[Any] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        *,
        store: WorkflowStore | None = None,
        recorder: ExecutionRecorder | None = None,
        record_store: RecordStore | None = None,
        reports: ReportRegistry | None = None,
        email_sender: EmailSender | None = None,
        notifier: Notifier | None = None,
        analyzer: AIAnalyzer | None = None,
        http_client: httpx.Client | None = None,
    ) -> WorkflowEngine:
        """Build an engine and its collaborators from configuration.

        Explicitly passed collaborators take precedence over the configured ones.

        Raises:
            ConfigurationError: If a configured collaborator cannot be created
            PersistenceError: If the execution database cannot be initialized
        """
        closeables: list[Any] = []
        if recorder is None:
            if config.storage.backend == "sql":
                recorder = SQLExecutionRecorder(config.storage.db_url or "", echo=config.storage.echo)
                closeables.append(recorder)
            else:
                recorder = InMemoryExecutionRecorder()

        if email_sender is None and config.smtp is not None:
            email_sender = SMTPEmailSender(config.smtp)

        if notifier is None:
            try:
                notifier = create_notifier(config.notifications)
            except ValueError as exc:
                raise ConfigurationError(str(exc), config_key="notifications") from exc
            if hasattr(notifier, "close"):
                closeables.append(notifier)

        try:
            update_targets = UpdateTargetRegistry.from_config(config.update_targets)
        except ValueError as exc:
            raise ConfigurationError(str(exc), config_key="update_targets") from exc

        registry = create_default_registry(
            email_sender=email_sender,
            record_store=record_store if record_store is not None else InMemoryRecordStore(),
            notifier=notifier,
            analyzer=analyzer if analyzer is not None else PydanticAIAnalyzer(config.ai),
            reports=reports,
            update_targets=update_targets,
            http_config=config.http,
            http_client=http_client,
        )

        engine = cls(
            store=store if store is not None else InMemoryWorkflowStore.from_config(config),
            registry=registry,
            recorder=recorder,
            execution=config.execution,
            concurrency=config.concurrency,
        )
        engine._closeables.extend(closeables)
        logger.info(
            "Workflow engine ready: %d action type(s), %s storage",
            len(registry),
            config.storage.backend,
        )
        return engine

    def close(self) -> None:
        """Release resources owned by the engine."""
        for resource in self._closeables:
            resource.close()
        self._closeables.clear()

    def __enter__(self) -> WorkflowEngine:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(
        self,
        workflow_id: str,
        trigger_data: Mapping[str, Any] | None = None,
        *,
        scope_id: str | None = None,
        actor: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Run a workflow unconditionally.

        Args:
            workflow_id: ID of the workflow to run
            trigger_data: Trigger payload, stored verbatim on the record
            scope_id: Restrict the lookup to this scope
            actor: Who triggered the run
            timeout: Run deadline in seconds (defaults to the configured one)

        Returns:
            ExecutionResult with the final status and ordered outcomes

        Raises:
            DefinitionNotFoundError: If the workflow is missing or inactive
            ConcurrencyLimitError: If no concurrency slot is free
            PersistenceError: If the execution record cannot be written
        """
        workflow = self._load(workflow_id, scope_id)
        return self._run_definition(workflow, trigger_data, actor=actor, timeout=timeout)

    def fire(
        self,
        workflow_id: str,
        trigger_data: Mapping[str, Any] | None = None,
        *,
        scope_id: str | None = None,
        actor: str | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult | None:
        """Run a workflow only if its conditions match the trigger payload.

        Returns:
            ExecutionResult, or None when the conditions do not match (no
            execution record is created in that case)
        """
        workflow = self._load(workflow_id, scope_id)
        if not self.evaluator.evaluate(workflow.conditions, trigger_data):
            logger.info("Conditions not met for workflow %s; skipping", workflow.id)
            return None
        return self._run_definition(workflow, trigger_data, actor=actor, timeout=timeout)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _load(self, workflow_id: str, scope_id: str | None) -> WorkflowDefinition:
        workflow = self.store.get(workflow_id, scope_id)
        if workflow is None or not workflow.is_active:
            logger.warning("Workflow not found or inactive: %s", workflow_id)
            raise DefinitionNotFoundError(workflow_id, scope_id)
        return workflow

    def _run_definition(
        self,
        workflow: WorkflowDefinition,
        trigger_data: Mapping[str, Any] | None,
        *,
        actor: str | None,
        timeout: float | None,
    ) -> ExecutionResult:
        with self._concurrency_slot(workflow.id):
            execution_id = self.recorder.create_running(
                workflow.id,
                trigger_data,
                scope_id=workflow.scope_id,
                triggered_by=actor,
            )
            logger.info("Started execution %s of workflow %s", execution_id, workflow.id)

            started = time.perf_counter()
            outcomes: list[ActionOutcome] = []
            try:
                context = TriggerContext.with_timeout(
                    timeout if timeout is not None else self.execution.default_timeout,
                    payload=dict(trigger_data or {}),
                    actor=actor,
                    scope_id=workflow.scope_id,
                    workflow_id=workflow.id,
                    execution_id=execution_id,
                    ai_model=workflow.ai_model,
                    trigger_type=TriggerType(workflow.trigger_type),
                )
                self._execute_actions(workflow, context, outcomes)

                status = (
                    ExecutionStatus.SUCCEEDED
                    if all(outcome.success for outcome in outcomes)
                    else ExecutionStatus.FAILED
                )
                last_error = None
                if status is ExecutionStatus.FAILED:
                    last_error = next(
                        (outcome.error for outcome in reversed(outcomes) if not outcome.success),
                        None,
                    )
                elapsed = _elapsed_ms(started)

                self.recorder.finalize(execution_id, status, outcomes, elapsed, last_error)
            except Exception as exc:
                log_exception(
                    logger, exc, f"Execution {execution_id} of workflow {workflow.id} aborted"
                )
                self._finalize_after_error(execution_id, outcomes, started, exc)
                raise

        logger.info(
            "Execution %s of workflow %s %s in %dms (%d/%d action(s))",
            execution_id,
            workflow.id,
            status.value,
            elapsed,
            len(outcomes),
            len(workflow.actions),
        )
        return ExecutionResult(
            execution_id=execution_id,
            workflow_id=workflow.id,
            status=status,
            outcomes=tuple(outcomes),
            execution_time_ms=elapsed,
            error=last_error,
        )

    def _execute_actions(
        self,
        workflow: WorkflowDefinition,
        context: TriggerContext,
        outcomes: list[ActionOutcome],
    ) -> None:
        for index, action in enumerate(workflow.actions):
            handler = self.registry.lookup(action.type)
            if handler is None:
                error = UnknownActionError(action.type)
                logger.error("Workflow %s: %s", workflow.id, error)
                self._record_outcome(
                    context.execution_id,
                    outcomes,
                    ActionOutcome(index=index, action_type=action.type, success=False, error=str(error)),
                )
                return

            outcome = self._execute_action(index, action, handler, context)
            self._record_outcome(context.execution_id, outcomes, outcome)
            if not outcome.success and workflow.fail_fast:
                logger.info(
                    "Workflow %s stopped at action %d (%s): fail_fast",
                    workflow.id,
                    index,
                    action.type,
                )
                return

    def _execute_action(
        self,
        index: int,
        action: ActionSpec,
        handler: BaseActionHandler,
        context: TriggerContext,
    ) -> ActionOutcome:
        started = time.perf_counter()
        try:
            context.check_deadline(action.type)
            result = handler.execute(copy.deepcopy(action.config), context)
        except ActionExecutionError as exc:
            logger.warning("Action %d (%s) failed: %s", index, action.type, exc)
            return ActionOutcome(
                index=index,
                action_type=action.type,
                success=False,
                error=str(exc),
                duration_ms=_elapsed_ms(started),
            )
        except Exception as exc:
            log_exception(logger, exc, f"Action {index} ({action.type}) raised unexpectedly")
            return ActionOutcome(
                index=index,
                action_type=action.type,
                success=False,
                error=f"{type(exc).__name__}: {exc}",
                duration_ms=_elapsed_ms(started),
            )

        if not isinstance(result, ActionResult):
            return ActionOutcome(
                index=index,
                action_type=action.type,
                success=False,
                error=f"Handler returned {type(result).__name__} instead of ActionResult",
                duration_ms=_elapsed_ms(started),
            )
        if not result.success:
            logger.warning("Action %d (%s) reported failure: %s", index, action.type, result.error)
        return ActionOutcome(
            index=index,
            action_type=action.type,
            success=result.success,
            result=result.data,
            error=None if result.success else (result.error or "action failed"),
            duration_ms=_elapsed_ms(started),
        )

    def _record_outcome(
        self,
        execution_id: str,
        outcomes: list[ActionOutcome],
        outcome: ActionOutcome,
    ) -> None:
        outcomes.append(outcome)
        if self.execution.incremental_persistence:
            self.recorder.append_outcome(execution_id, outcome)

    def _finalize_after_error(
        self,
        execution_id: str,
        outcomes: list[ActionOutcome],
        started: float,
        error: Exception,
    ) -> None:
        """Best-effort terminal write after the run itself failed."""
        try:
            self.recorder.finalize(
                execution_id,
                ExecutionStatus.FAILED,
                outcomes,
                _elapsed_ms(started),
                f"System error: {error}",
            )
        except PersistenceError as finalize_error:
            log_exception(
                logger, finalize_error, f"Could not finalize execution {execution_id} after failure"
            )

    # ------------------------------------------------------------------
    # Concurrency
    # ------------------------------------------------------------------
    def _semaphore(self, workflow_id: str, limit: int) -> threading.BoundedSemaphore:
        with self._semaphores_lock:
            semaphore = self._semaphores.get(workflow_id)
            if semaphore is None:
                semaphore = threading.BoundedSemaphore(limit)
                self._semaphores[workflow_id] = semaphore
            return semaphore

    @contextmanager
    def _concurrency_slot(self, workflow_id: str) -> Iterator[None]:
        limit = self.concurrency.per_workflow_limit
        if limit is None:
            yield
            return

        semaphore = self._semaphore(workflow_id, limit)
        wait = self.concurrency.acquire_timeout
        if wait is None:
            acquired = semaphore.acquire()
        elif wait == 0:
            acquired = semaphore.acquire(blocking=False)
        else:
            acquired = semaphore.acquire(timeout=wait)
        if not acquired:
            logger.warning("Concurrency limit reached for workflow %s (%d)", workflow_id, limit)
            raise ConcurrencyLimitError(workflow_id, limit)
        try:
            yield
        finally:
            semaphore.release()


__all__ = ["WorkflowEngine"]
