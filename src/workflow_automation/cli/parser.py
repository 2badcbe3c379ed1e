"""Argument parser for the workflow-engine CLI."""

from __future__ import annotations

import argparse

from .. import __version__


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--config",
        default="engine.yaml",
        help="Path to configuration file (default: engine.yaml)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="workflow-engine",
        description="Run and inspect automation workflows",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # list
    list_parser = subparsers.add_parser("list", help="List configured workflows")
    _add_config_argument(list_parser)
    list_parser.add_argument("--scope", help="Only show workflows owned by this scope")

    # run <workflow_id>
    run_parser = subparsers.add_parser("run", help="Run a workflow")
    run_parser.add_argument("workflow_id", help="ID of the workflow to run")
    _add_config_argument(run_parser)
    run_parser.add_argument(
        "-d",
        "--data",
        help="Trigger payload as JSON, or @path to a JSON file",
    )
    run_parser.add_argument("--actor", help="User triggering the run")
    run_parser.add_argument("--scope", help="Scope the workflow must belong to")
    run_parser.add_argument("--timeout", type=float, help="Run deadline in seconds")
    run_parser.add_argument(
        "--check-conditions",
        action="store_true",
        help="Skip the run when the workflow's conditions do not match",
    )
    run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    # check <workflow_id>
    check_parser = subparsers.add_parser(
        "check", help="Evaluate a workflow's conditions against a payload"
    )
    check_parser.add_argument("workflow_id", help="ID of the workflow to check")
    _add_config_argument(check_parser)
    check_parser.add_argument(
        "-d",
        "--data",
        help="Trigger payload as JSON, or @path to a JSON file",
    )

    # history
    history_parser = subparsers.add_parser("history", help="List recent executions")
    _add_config_argument(history_parser)
    history_parser.add_argument("-w", "--workflow", help="Filter by workflow id")
    history_parser.add_argument("--scope", help="Filter by scope id")
    history_parser.add_argument(
        "--status",
        choices=["running", "succeeded", "failed"],
        help="Filter by status",
    )
    history_parser.add_argument(
        "-n", "--limit", type=int, default=20, help="Maximum number of executions (default: 20)"
    )

    # show <execution_id>
    show_parser = subparsers.add_parser("show", help="Show one execution record")
    show_parser.add_argument("execution_id", help="Execution ID")
    _add_config_argument(show_parser)
    show_parser.add_argument("--json", action="store_true", help="Print the record as JSON")

    return parser


__all__ = ["build_parser"]
