"""Command handlers for the workflow-engine CLI."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..automation import ConditionEvaluator, ExecutionRecord, ExecutionResult, WorkflowEngine
from ..core import EngineConfig, WorkflowEngineError, get_logger, setup_logging

logger = get_logger("cli")

STATUS_STYLES = {
    "running": "[yellow]running[/]",
    "succeeded": "[green]succeeded[/]",
    "failed": "[red]failed[/]",
}


def _load_config(path: str, console: Console) -> EngineConfig | None:
    try:
        config = EngineConfig.from_file(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/]")
        return None
    except ValueError as exc:
        console.print(f"[red]Invalid configuration in {path}:[/] {exc}")
        return None
    setup_logging(config.logging)
    return config


def _parse_payload(raw: str | None) -> dict[str, Any]:
    """Parse ``--data`` as inline JSON or ``@file``.

    Raises:
        ValueError: If the payload is not a JSON object
    """
    if not raw:
        return {}
    text = Path(raw[1:]).read_text(encoding="utf-8") if raw.startswith("@") else raw
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Trigger payload must be a JSON object")
    return payload


def _format_result(value: Any, width: int = 60) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else json.dumps(value, default=str, ensure_ascii=False)
    return text if len(text) <= width else text[: width - 3] + "..."


def _outcomes_table(title: str, outcomes: Any) -> Table:
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Action", style="cyan")
    table.add_column("Result")
    table.add_column("Duration", justify="right")
    table.add_column("Details")
    for outcome in outcomes:
        table.add_row(
            str(outcome.index),
            outcome.action_type,
            "[green]ok[/]" if outcome.success else "[red]failed[/]",
            f"{outcome.duration_ms}ms",
            _format_result(outcome.result if outcome.success else outcome.error),
        )
    return table


def cmd_list(args: argparse.Namespace) -> int:
    """Handle the list command."""
    console = Console()
    config = _load_config(args.config, console)
    if config is None:
        return 1

    workflows = [
        workflow
        for workflow in config.workflows
        if args.scope is None or workflow.scope_id == args.scope
    ]
    if not workflows:
        console.print("[yellow]No workflows configured.[/]")
        return 0

    table = Table(title="Workflows")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Trigger", style="magenta")
    table.add_column("Actions", style="green")
    table.add_column("Conditions", justify="right")
    table.add_column("Fail-fast")
    table.add_column("Status")

    for workflow in workflows:
        table.add_row(
            workflow.id,
            workflow.name,
            workflow.trigger_type,
            ", ".join(action.type for action in workflow.actions),
            str(len(workflow.conditions)),
            "yes" if workflow.fail_fast else "no",
            "[green]active[/]" if workflow.is_active else "[red]inactive[/]",
        )

    console.print(table)
    return 0


def _print_result(console: Console, result: ExecutionResult) -> None:
    console.print(
        Panel(
            f"Execution: {result.execution_id}\n"
            f"Status: {STATUS_STYLES[result.status.value]}\n"
            f"Time: {result.execution_time_ms}ms"
            + (f"\nError: {result.error}" if result.error else ""),
            title=f"Workflow {result.workflow_id}",
        )
    )
    console.print(_outcomes_table("Actions", result.outcomes))


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the run command."""
    console = Console()
    config = _load_config(args.config, console)
    if config is None:
        return 1

    try:
        payload = _parse_payload(args.data)
    except (OSError, ValueError) as exc:
        console.print(f"[red]{exc}[/]")
        return 1

    try:
        with WorkflowEngine.from_config(config) as engine:
            if args.check_conditions:
                result = engine.fire(
                    args.workflow_id,
                    payload,
                    scope_id=args.scope,
                    actor=args.actor,
                    timeout=args.timeout,
                )
            else:
                result = engine.run(
                    args.workflow_id,
                    payload,
                    scope_id=args.scope,
                    actor=args.actor,
                    timeout=args.timeout,
                )
    except WorkflowEngineError as exc:
        logger.debug("Run of %s failed", args.workflow_id, exc_info=True)
        console.print(f"[red]{exc}[/]")
        return 1

    if result is None:
        console.print(f"[yellow]Conditions not met; workflow {args.workflow_id} did not run.[/]")
        return 0

    if args.json:
        console.print_json(json.dumps(result.to_dict(), default=str))
    else:
        _print_result(console, result)
    return 0 if result.success else 1


def cmd_check(args: argparse.Namespace) -> int:
    """Handle the check command."""
    console = Console()
    config = _load_config(args.config, console)
    if config is None:
        return 1

    workflow = config.get_workflow(args.workflow_id)
    if workflow is None:
        console.print(f"[red]Workflow not found: {args.workflow_id}[/]")
        return 1

    try:
        payload = _parse_payload(args.data)
    except (OSError, ValueError) as exc:
        console.print(f"[red]{exc}[/]")
        return 1

    evaluator = ConditionEvaluator()
    if not workflow.conditions:
        console.print(f"[green]Workflow {workflow.id} has no conditions and always fires.[/]")
        return 0

    table = Table(title=f"Conditions for {workflow.id}")
    table.add_column("Field", style="cyan")
    table.add_column("Operator", style="magenta")
    table.add_column("Value")
    table.add_column("Result")
    for condition, matched in evaluator.explain(workflow.conditions, payload):
        table.add_row(
            condition.field,
            condition.operator,
            json.dumps(condition.value, default=str),
            "[green]true[/]" if matched else "[red]false[/]",
        )
    console.print(table)

    if evaluator.evaluate(workflow.conditions, payload):
        console.print("[green]Workflow would fire.[/]")
        return 0
    console.print("[yellow]Workflow would not fire.[/]")
    return 1


def cmd_history(args: argparse.Namespace) -> int:
    """Handle the history command."""
    console = Console()
    config = _load_config(args.config, console)
    if config is None:
        return 1
    if config.storage.backend == "memory":
        console.print(
            "[yellow]The memory storage backend keeps no history between runs; "
            "configure storage.backend: sql to browse executions.[/]"
        )

    try:
        with WorkflowEngine.from_config(config) as engine:
            records = engine.recorder.list_executions(
                workflow_id=args.workflow,
                scope_id=args.scope,
                status=args.status,
                limit=args.limit,
            )
    except WorkflowEngineError as exc:
        console.print(f"[red]{exc}[/]")
        return 1

    if not records:
        console.print("[yellow]No executions found.[/]")
        return 0

    table = Table(title="Executions")
    table.add_column("Execution", style="cyan")
    table.add_column("Workflow")
    table.add_column("Status")
    table.add_column("Started")
    table.add_column("Time", justify="right")
    table.add_column("Actions", justify="right")
    table.add_column("Error")
    for record in records:
        table.add_row(
            record.id,
            record.workflow_id,
            STATUS_STYLES[record.status.value],
            record.started_at or "",
            f"{record.execution_time_ms}ms" if record.execution_time_ms is not None else "-",
            str(len(record.outcomes)),
            _format_result(record.error_message, width=40),
        )
    console.print(table)
    return 0


def _print_record(console: Console, record: ExecutionRecord) -> None:
    lines = [
        f"Workflow: {record.workflow_id}",
        f"Status: {STATUS_STYLES[record.status.value]}",
        f"Triggered by: {record.triggered_by or '-'}",
        f"Started: {record.started_at}",
        f"Completed: {record.completed_at or '-'}",
    ]
    if record.execution_time_ms is not None:
        lines.append(f"Time: {record.execution_time_ms}ms")
    if record.error_message:
        lines.append(f"Error: {record.error_message}")
    lines.append(f"Trigger data: {_format_result(record.trigger_data, width=200)}")
    console.print(Panel("\n".join(lines), title=f"Execution {record.id}"))
    console.print(_outcomes_table("Actions", record.outcomes))


def cmd_show(args: argparse.Namespace) -> int:
    """Handle the show command."""
    console = Console()
    config = _load_config(args.config, console)
    if config is None:
        return 1

    try:
        with WorkflowEngine.from_config(config) as engine:
            record = engine.recorder.get(args.execution_id)
    except WorkflowEngineError as exc:
        console.print(f"[red]{exc}[/]")
        return 1

    if record is None:
        console.print(f"[red]Execution not found: {args.execution_id}[/]")
        return 1

    if args.json:
        console.print_json(json.dumps(record.to_dict(), default=str))
    else:
        _print_record(console, record)
    return 0


__all__ = ["cmd_list", "cmd_run", "cmd_check", "cmd_history", "cmd_show"]
