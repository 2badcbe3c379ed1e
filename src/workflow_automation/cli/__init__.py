"""Command-line interface for the workflow automation engine."""

from __future__ import annotations

from collections.abc import Sequence

from .commands import cmd_check, cmd_history, cmd_list, cmd_run, cmd_show
from .parser import build_parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Optional sequence of CLI arguments (without the program name).

    Returns:
        Process exit code. 0 for success.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        raise SystemExit(0)

    handlers = {
        "list": cmd_list,
        "run": cmd_run,
        "check": cmd_check,
        "history": cmd_history,
        "show": cmd_show,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


__all__ = [
    "main",
    "build_parser",
    "cmd_list",
    "cmd_run",
    "cmd_check",
    "cmd_history",
    "cmd_show",
]
