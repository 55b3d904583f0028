"""Command-line interface for Store Workflows."""

from __future__ import annotations

from collections.abc import Sequence

from .commands import cmd_run, cmd_serve, cmd_templates, cmd_validate
from .parser import build_parser, print_banner


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
        "serve": cmd_serve,
        "templates": cmd_templates,
        "validate": cmd_validate,
        "run": cmd_run,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)

    parser.print_help()
    return 1


__all__ = [
    "build_parser",
    "cmd_run",
    "cmd_serve",
    "cmd_templates",
    "cmd_validate",
    "main",
    "print_banner",
]
