"""Serve command: run the engine and its HTTP receiver until interrupted."""

from __future__ import annotations

import argparse

from ..base import WorkflowApp, load_settings, logger
from ..parser import print_banner


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle serve command.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1

    if args.debug:
        settings.logging.level = "DEBUG"
    if args.host:
        settings.server.host = args.host
    if args.port:
        settings.server.port = args.port

    print_banner(settings, args)
    try:
        app = WorkflowApp(settings)
        app.run()
    except Exception as exc:
        logger.error("Engine terminated with an error: %s", exc, exc_info=True)
        return 1
    return 0


__all__ = ["cmd_serve"]
