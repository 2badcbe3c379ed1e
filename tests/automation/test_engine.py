"""Tests for the workflow engine.

Tests cover:
- Ordered execution and the fail-fast policy
- Unknown action types
- Status aggregation and execution records
- Condition gating with fire()
- Deadlines and the per-workflow concurrency limit
- Persistence failures and best-effort finalization
- Construction from EngineConfig
"""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from pytest_httpx import HTTPXMock

from workflow_automation.automation import (
    ActionRegistry,
    ActionResult,
    ApiCallHandler,
    BaseActionHandler,
    ExecutionStatus,
    InMemoryExecutionRecorder,
    InMemoryWorkflowStore,
    SendEmailHandler,
    SQLExecutionRecorder,
    TriggerContext,
    WorkflowEngine,
)
from workflow_automation.core.config import (
    ConcurrencyConfig,
    EngineConfig,
    ExecutionConfig,
    WorkflowDefinition,
)
from workflow_automation.core.exceptions import (
    ConcurrencyLimitError,
    DefinitionNotFoundError,
    PersistenceError,
)
from workflow_automation.services.email import EmailSender
from workflow_automation.services.records import InMemoryRecordStore


def _store(*workflows):
    return InMemoryWorkflowStore(workflows)


# ==============================================================================
# Ordering and fail-fast
# ==============================================================================


class TestFailFast:
    """Tests for ordered execution under both fail-fast settings."""

    @pytest.mark.parametrize("failing_index", [0, 1, 2])
    def test_fail_fast_stops_at_first_failure(self, build_engine, make_workflow, registry, handler_class, failing_index):
        """With fail_fast, outcomes end at the failing action."""
        registry.register("flaky", handler_class("flaky", failure="boom"))
        actions = ["send_email", "create_task", "api_call"]
        actions[failing_index] = "flaky"
        engine = build_engine(make_workflow(actions, fail_fast=True))

        result = engine.run("wf-1", {})

        assert result.status is ExecutionStatus.FAILED
        assert len(result.outcomes) == failing_index + 1
        assert result.outcomes[-1].error == "boom"
        assert result.failed_outcome.index == failing_index

    def test_without_fail_fast_all_actions_run(self, build_engine, make_workflow, registry, handler_class, handlers):
        registry.register("flaky", handler_class("flaky", failure="boom"))
        engine = build_engine(make_workflow(["flaky", "send_email", "flaky", "create_task"]))

        result = engine.run("wf-1", {})

        assert result.status is ExecutionStatus.FAILED
        assert [o.success for o in result.outcomes] == [False, True, False, True]
        assert [o.index for o in result.outcomes] == [0, 1, 2, 3]
        assert len(handlers["create_task"].calls) == 1
        assert result.error == "boom"

    def test_actions_run_in_declared_order(self, build_engine, make_workflow, registry):
        order: list[str] = []

        class Tracking(BaseActionHandler):
            def __init__(self, name: str) -> None:
                self.name = name

            def execute(self, config: Any, context: TriggerContext) -> ActionResult:
                order.append(self.name)
                return ActionResult.ok()

        for name in ("c", "a", "b"):
            registry.register(name, Tracking(name))
        engine = build_engine(make_workflow(["c", "a", "b", "a"]))

        engine.run("wf-1")

        assert order == ["c", "a", "b", "a"]

    def test_handler_exception_is_a_failed_outcome(self, build_engine, make_workflow, registry, handler_class):
        registry.register("crashy", handler_class("crashy", error=RuntimeError("kaboom")))
        engine = build_engine(make_workflow(["crashy", "send_email"]))

        result = engine.run("wf-1", {})

        assert result.outcomes[0].success is False
        assert result.outcomes[0].error == "RuntimeError: kaboom"
        assert result.outcomes[1].success is True

    def test_non_result_return_value_fails(self, build_engine, make_workflow, registry):
        class Sloppy(BaseActionHandler):
            def execute(self, config: Any, context: TriggerContext) -> Any:
                return {"not": "a result"}

        registry.register("sloppy", Sloppy())
        engine = build_engine(make_workflow(["sloppy"]))

        result = engine.run("wf-1")

        assert result.status is ExecutionStatus.FAILED
        assert "instead of ActionResult" in result.outcomes[0].error


# ==============================================================================
# Scenarios
# ==============================================================================


class TestScenarios:
    """End-to-end scenarios."""

    def test_unknown_action_halts_run(self, build_engine, make_workflow, handlers, recorder):
        """[send_email, frobnicate, create_task] with fail_fast stops at frobnicate."""
        engine = build_engine(make_workflow(["send_email", "frobnicate", "create_task"], fail_fast=True))

        result = engine.run("wf-1", {"order_id": 1})

        assert result.status is ExecutionStatus.FAILED
        assert len(result.outcomes) == 2
        assert "frobnicate" in result.outcomes[1].error
        assert handlers["create_task"].calls == []
        assert recorder.get(result.execution_id).status is ExecutionStatus.FAILED

    @pytest.mark.parametrize("fail_fast", [True, False])
    def test_unknown_action_is_fatal_regardless_of_fail_fast(self, build_engine, make_workflow, handlers, fail_fast):
        engine = build_engine(make_workflow(["frobnicate", "send_email"], fail_fast=fail_fast))

        result = engine.run("wf-1", {})

        assert result.status is ExecutionStatus.FAILED
        assert len(result.outcomes) == 1
        assert result.outcomes[-1].error == "unknown action type: frobnicate"
        assert result.error == "unknown action type: frobnicate"
        assert handlers["send_email"].calls == []

    def test_all_actions_succeed(self, build_engine, make_workflow, recorder):
        engine = build_engine(make_workflow(["send_email", "api_call", "create_task"]))

        result = engine.run("wf-1", {"order_id": 1}, actor="7")

        assert result.status is ExecutionStatus.SUCCEEDED
        assert result.success is True
        assert len(result.outcomes) == 3
        assert result.error is None
        assert result.failed_outcome is None
        assert result.outcomes[0].result == {"message_id": "<m1>"}

        record = recorder.get(result.execution_id)
        assert record.status is ExecutionStatus.SUCCEEDED
        assert record.triggered_by == "7"
        assert record.error_message is None
        assert record.outcomes == list(result.outcomes)

    def test_api_call_server_error_is_success(self, httpx_mock: HTTPXMock, build_engine, make_workflow):
        """An HTTP 500 does not fail the action; the code is in the result."""
        httpx_mock.add_response(url="https://api.example.com/hook", status_code=500)
        registry = ActionRegistry({"api_call": ApiCallHandler()})
        engine = build_engine(
            make_workflow([{"type": "api_call", "config": {"url": "https://api.example.com/hook", "method": "POST"}}]),
            registry=registry,
        )

        result = engine.run("wf-1", {})

        assert result.status is ExecutionStatus.SUCCEEDED
        assert result.outcomes[0].success is True
        assert result.outcomes[0].result["http_code"] == 500

    def test_conditions_gate_fire(self, build_engine, make_workflow, recorder, handlers):
        """A missing field makes the condition false; nothing runs or is recorded."""
        engine = build_engine(
            make_workflow(
                ["send_email"],
                conditions=[{"field": "amount", "op": "greater_than", "value": 100}],
            )
        )

        assert engine.fire("wf-1", {}) is None
        assert engine.fire("wf-1", {"amount": 50}) is None
        assert len(recorder) == 0
        assert handlers["send_email"].calls == []

        result = engine.fire("wf-1", {"amount": 150})

        assert result is not None
        assert result.success is True
        assert len(recorder) == 1

    def test_run_ignores_conditions(self, build_engine, make_workflow):
        engine = build_engine(
            make_workflow(["send_email"], conditions=[{"field": "amount", "op": "greater_than", "value": 100}])
        )

        assert engine.run("wf-1", {}).success is True


# ==============================================================================
# Definitions and context
# ==============================================================================


class TestDefinitions:
    """Tests for definition lookup and the trigger context."""

    def test_missing_workflow(self, build_engine, recorder):
        with pytest.raises(DefinitionNotFoundError):
            build_engine().run("nope", {})
        assert len(recorder) == 0

    def test_inactive_workflow(self, build_engine, make_workflow, recorder):
        engine = build_engine(make_workflow(["send_email"], is_active=False))

        with pytest.raises(DefinitionNotFoundError, match="wf-1"):
            engine.run("wf-1", {})
        with pytest.raises(DefinitionNotFoundError):
            engine.fire("wf-1", {})
        assert len(recorder) == 0

    def test_scope_mismatch(self, build_engine, make_workflow):
        engine = build_engine(make_workflow(["send_email"], scope_id="acme"))

        with pytest.raises(DefinitionNotFoundError):
            engine.run("wf-1", {}, scope_id="globex")
        assert engine.run("wf-1", {}, scope_id="acme").success is True

    def test_context_passed_to_handlers(self, build_engine, make_workflow, handlers):
        engine = build_engine(
            make_workflow(
                [{"type": "send_email", "config": {"to": "a@example.com"}}],
                scope_id="acme",
                ai_model="openai:gpt-4o",
                trigger_type="webhook",
            )
        )

        result = engine.run("wf-1", {"order_id": 9}, actor="7")

        config, context = handlers["send_email"].calls[0]
        assert config == {"to": "a@example.com"}
        assert context.payload == {"order_id": 9}
        assert context.actor == "7"
        assert context.scope_id == "acme"
        assert context.ai_model == "openai:gpt-4o"
        assert context.trigger_type.value == "webhook"
        assert context.execution_id == result.execution_id


# ==============================================================================
# Records
# ==============================================================================


class TestRecords:
    """Tests for execution records written during a run."""

    def test_running_record_exists_during_run(self, build_engine, make_workflow, registry, recorder):
        seen: list[Any] = []

        class Inspecting(BaseActionHandler):
            def execute(self, config: Any, context: TriggerContext) -> ActionResult:
                seen.append(recorder.get(context.execution_id))
                return ActionResult.ok()

        registry.register("inspect", Inspecting())
        engine = build_engine(make_workflow(["send_email", "inspect"]))

        result = engine.run("wf-1", {"order_id": 3})

        during = seen[0]
        assert during.status is ExecutionStatus.RUNNING
        assert during.execution_time_ms is None
        assert during.trigger_data == {"order_id": 3}
        assert [o.action_type for o in during.outcomes] == ["send_email"]

        after = recorder.get(result.execution_id)
        assert after.execution_time_ms is not None
        assert after.execution_time_ms >= 0
        assert result.execution_time_ms == after.execution_time_ms

    def test_incremental_persistence_disabled(self, build_engine, make_workflow, registry, recorder):
        seen: list[Any] = []

        class Inspecting(BaseActionHandler):
            def execute(self, config: Any, context: TriggerContext) -> ActionResult:
                seen.append(recorder.get(context.execution_id))
                return ActionResult.ok()

        registry.register("inspect", Inspecting())
        engine = build_engine(
            make_workflow(["send_email", "inspect"]),
            execution=ExecutionConfig(incremental_persistence=False),
        )

        result = engine.run("wf-1", {})

        assert seen[0].outcomes == []
        assert len(recorder.get(result.execution_id).outcomes) == 2

    def test_sql_round_trip(self, tmp_path: Path, make_workflow, registry, handler_class):
        registry.register("flaky", handler_class("flaky", failure="nope"))
        recorder = SQLExecutionRecorder(f"sqlite:///{tmp_path / 'runs.db'}")
        engine = WorkflowEngine(
            store=_store(make_workflow(["send_email", "flaky", "api_call"])),
            registry=registry,
            recorder=recorder,
        )

        result = engine.run("wf-1", {"order_id": 5})
        record = recorder.get(result.execution_id)
        recorder.close()

        assert record.status is ExecutionStatus.FAILED
        assert record.outcomes == list(result.outcomes)
        assert record.error_message == "nope"


# ==============================================================================
# Deadlines and concurrency
# ==============================================================================


class TestDeadlines:
    """Tests for the run deadline."""

    def test_expired_deadline_fails_remaining_actions(self, build_engine, make_workflow, handlers):
        engine = build_engine(make_workflow(["send_email", "create_task"]))

        result = engine.run("wf-1", {}, timeout=0)

        assert result.status is ExecutionStatus.FAILED
        assert len(result.outcomes) == 2
        assert all("deadline exceeded" in o.error for o in result.outcomes)
        assert handlers["send_email"].calls == []

    def test_expired_deadline_respects_fail_fast(self, build_engine, make_workflow):
        engine = build_engine(make_workflow(["send_email", "create_task"], fail_fast=True))

        result = engine.run("wf-1", {}, timeout=0)

        assert len(result.outcomes) == 1

    def test_default_timeout_from_config(self, build_engine, make_workflow, handlers):
        engine = build_engine(
            make_workflow(["send_email"]),
            execution=ExecutionConfig(default_timeout=30),
        )

        engine.run("wf-1", {})

        _, context = handlers["send_email"].calls[0]
        assert 0 < context.remaining() <= 30


class TestConcurrency:
    """Tests for the per-workflow concurrency limit."""

    def test_limit_rejects_second_run(self, build_engine, make_workflow, registry, recorder):
        started = threading.Event()
        release = threading.Event()

        class Blocking(BaseActionHandler):
            def execute(self, config: Any, context: TriggerContext) -> ActionResult:
                started.set()
                release.wait(5)
                return ActionResult.ok()

        registry.register("block", Blocking())
        engine = build_engine(
            make_workflow(["block"]),
            concurrency=ConcurrencyConfig(per_workflow_limit=1, acquire_timeout=0),
        )
        results: list[Any] = []
        worker = threading.Thread(target=lambda: results.append(engine.run("wf-1", {})))
        worker.start()
        assert started.wait(5)

        try:
            with pytest.raises(ConcurrencyLimitError) as exc_info:
                engine.run("wf-1", {})
            assert exc_info.value.limit == 1
            assert len(recorder) == 1
        finally:
            release.set()
            worker.join(5)

        assert results[0].success is True
        assert engine.run("wf-1", {}).success is True

    def test_limit_is_per_workflow(self, build_engine, make_workflow, registry):
        started = threading.Event()
        release = threading.Event()

        class Blocking(BaseActionHandler):
            def execute(self, config: Any, context: TriggerContext) -> ActionResult:
                started.set()
                release.wait(5)
                return ActionResult.ok()

        registry.register("block", Blocking())
        engine = build_engine(
            make_workflow(["block"], id="slow"),
            make_workflow(["send_email"], id="fast"),
            concurrency=ConcurrencyConfig(per_workflow_limit=1, acquire_timeout=0),
        )
        worker = threading.Thread(target=lambda: engine.run("slow", {}))
        worker.start()
        assert started.wait(5)

        try:
            assert engine.run("fast", {}).success is True
        finally:
            release.set()
            worker.join(5)


# ==============================================================================
# Persistence failures
# ==============================================================================


class FailingAppendRecorder(InMemoryExecutionRecorder):
    def append_outcome(self, execution_id, outcome):
        raise PersistenceError("disk full", execution_id)


class FlakyFinalizeRecorder(InMemoryExecutionRecorder):
    """Fails the first ``failures`` finalize calls, then behaves normally."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.finalize_calls = 0

    def finalize(self, execution_id, *args, **kwargs):
        self.finalize_calls += 1
        if self.finalize_calls <= self.failures:
            raise PersistenceError("disk full", execution_id)
        super().finalize(execution_id, *args, **kwargs)


class TestPersistenceFailures:
    """Tests for recorder failures during a run."""

    def test_append_failure_finalizes_and_reraises(self, make_workflow, registry):
        recorder = FailingAppendRecorder()
        engine = WorkflowEngine(store=_store(make_workflow(["send_email"])), registry=registry, recorder=recorder)

        with pytest.raises(PersistenceError, match="disk full"):
            engine.run("wf-1", {})

        record = recorder.list_executions()[0]
        assert record.status is ExecutionStatus.FAILED
        assert "disk full" in record.error_message
        assert record.execution_time_ms is not None

    def test_transient_finalize_failure_marks_run_failed(self, make_workflow, registry):
        recorder = FlakyFinalizeRecorder(failures=1)
        engine = WorkflowEngine(store=_store(make_workflow(["send_email"])), registry=registry, recorder=recorder)

        with pytest.raises(PersistenceError, match="disk full"):
            engine.run("wf-1", {})

        assert recorder.finalize_calls == 2
        record = recorder.list_executions()[0]
        assert record.status is ExecutionStatus.FAILED
        assert record.error_message == "System error: disk full"
        assert [o.action_type for o in record.outcomes] == ["send_email"]

    def test_finalize_is_attempted_at_most_twice(self, make_workflow, registry):
        recorder = FlakyFinalizeRecorder(failures=5)
        engine = WorkflowEngine(store=_store(make_workflow(["send_email"])), registry=registry, recorder=recorder)

        with pytest.raises(PersistenceError):
            engine.run("wf-1", {})

        assert recorder.finalize_calls == 2
        assert recorder.list_executions()[0].status is ExecutionStatus.RUNNING

    def test_invalid_payload_still_finalizes(self, build_engine, make_workflow, recorder, handlers):
        engine = build_engine(make_workflow(["send_email"]))

        with pytest.raises(TypeError):
            engine.run("wf-1", [1, 2])

        record = recorder.list_executions()[0]
        assert record.status is ExecutionStatus.FAILED
        assert record.error_message.startswith("System error:")
        assert record.execution_time_ms is not None
        assert handlers["send_email"].calls == []

    def test_create_failure_runs_nothing(self, make_workflow, registry, handlers):
        class FailingCreate(InMemoryExecutionRecorder):
            def create_running(self, *args, **kwargs):
                raise PersistenceError("db offline")

        engine = WorkflowEngine(store=_store(make_workflow(["send_email"])), registry=registry, recorder=FailingCreate())

        with pytest.raises(PersistenceError, match="db offline"):
            engine.run("wf-1", {})
        assert handlers["send_email"].calls == []


# ==============================================================================
# Collaborators
# ==============================================================================


class TestCollaborators:
    """Tests for the collaborators handed to the engine."""

    def test_given_empty_recorder_is_used(self, make_workflow, registry):
        recorder = InMemoryExecutionRecorder()
        engine = WorkflowEngine(store=_store(make_workflow(["send_email"])), registry=registry, recorder=recorder)

        result = engine.run("wf-1", {})

        assert engine.recorder is recorder
        assert recorder.get(result.execution_id).status is ExecutionStatus.SUCCEEDED

    def test_empty_store_filled_later(self):
        store = InMemoryWorkflowStore()
        record_store = InMemoryRecordStore()

        with WorkflowEngine.from_config(EngineConfig(), store=store, record_store=record_store) as engine:
            store.add(WorkflowDefinition(id="late", actions=[{"type": "create_task"}]))
            result = engine.run("late", {})

        assert engine.store is store
        assert result.success is True
        assert len(record_store.all("tasks")) == 1

    def test_handlers_cannot_mutate_definition(self, build_engine, make_workflow, registry):
        class Mutating(BaseActionHandler):
            def execute(self, config: Any, context: TriggerContext) -> ActionResult:
                config["to"] = "someone-else"
                config["nested"]["x"] = 2
                return ActionResult.ok()

        registry.register("mutate", Mutating())
        workflow = make_workflow([{"type": "mutate", "config": {"to": "a", "nested": {"x": 1}}}])
        engine = build_engine(workflow)

        engine.run("wf-1", {})

        assert workflow.actions[0].config == {"to": "a", "nested": {"x": 1}}

    def test_expired_deadline_sends_no_email(self, make_workflow):
        sender = MagicMock(spec=EmailSender)
        registry = ActionRegistry({"send_email": SendEmailHandler(sender)})
        engine = WorkflowEngine(
            store=_store(
                make_workflow([{"type": "send_email", "config": {"to": "a", "subject": "s", "body": "b"}}])
            ),
            registry=registry,
        )

        result = engine.run("wf-1", {}, timeout=0)

        assert result.status is ExecutionStatus.FAILED
        assert "deadline exceeded" in result.outcomes[0].error
        sender.send.assert_not_called()


# ==============================================================================
# Construction
# ==============================================================================


class TestFromConfig:
    """Tests for WorkflowEngine.from_config."""

    def test_memory_backend(self):
        config = EngineConfig(
            update_targets=[{"name": "task_status", "collection": "tasks", "allowed_fields": ["status"]}],
            workflows=[
                {
                    "id": "new-task",
                    "actions": [
                        {"type": "create_task", "config": {"title": "Follow up $customer"}},
                        {"type": "update_record", "config": {"target": "task_status", "key": 1, "data": {"status": "in_progress"}}},
                        {"type": "send_notification", "config": {"type": "info", "title": "t", "message": "m"}},
                    ],
                }
            ],
        )

        with WorkflowEngine.from_config(config) as engine:
            result = engine.run("new-task", {"customer": "ACME"}, actor="7")

        assert isinstance(engine.recorder, InMemoryExecutionRecorder)
        assert result.success is True, result.failed_outcome
        assert result.outcomes[0].result["title"] == "Follow up ACME"
        assert result.outcomes[1].result == {"target": "task_status", "affected": 1}

    def test_send_email_without_smtp_fails(self):
        config = EngineConfig(
            workflows=[{"id": "mail", "actions": [{"type": "send_email", "config": {"to": "a", "subject": "s", "body": "b"}}]}]
        )

        with WorkflowEngine.from_config(config) as engine:
            result = engine.run("mail", {})

        assert result.status is ExecutionStatus.FAILED
        assert "not available" in result.outcomes[0].error

    def test_sql_backend(self, tmp_path: Path):
        config = EngineConfig(
            storage={"backend": "sql", "db_url": f"sqlite:///{tmp_path / 'engine.db'}"},
            workflows=[{"id": "wf", "actions": [{"type": "create_task"}]}],
        )

        with WorkflowEngine.from_config(config) as engine:
            result = engine.run("wf", {})
            assert isinstance(engine.recorder, SQLExecutionRecorder)
            assert engine.recorder.get(result.execution_id).status is ExecutionStatus.SUCCEEDED
