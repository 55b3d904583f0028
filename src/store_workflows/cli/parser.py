"""CLI argument parser and banner display."""

from __future__ import annotations

import argparse

from rich.console import Console
from rich.panel import Panel

from .. import __version__
from ..core import EngineSettings


def print_banner(settings: EngineSettings, args: argparse.Namespace) -> None:
    """Print a startup banner with configuration info."""
    console = Console()

    info = f"""
[bold]Store Workflows[/bold] [green]v{__version__}[/]
Workflow automation for online stores.

[dim]----------------------------------------------------[/]
[bold]Config:[/bold]   [yellow]{args.config or "environment"}[/]
[bold]Database:[/bold] [yellow]{settings.persistence.db_path or ":memory:"}[/]
[bold]Host:[/bold]     [yellow]{settings.server.host}[/]
[bold]Port:[/bold]     [yellow]{settings.server.port}[/]
[bold]Workers:[/bold]  [yellow]{settings.engine.workers}[/]
[bold]Debug:[/bold]    [{"red" if args.debug else "green"}]{args.debug}[/]
"""

    panel = Panel(
        info,
        title="[bold white]Startup[/]",
        border_style="blue",
        expand=False,
    )
    console.print(panel)


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c",
        "--config",
        default=None,
        help="Path to YAML configuration file (default: environment variables)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="store-workflows",
        description="Store Workflows - workflow automation for online stores",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve the engine and its HTTP receiver
  store-workflows serve -c config.yaml --port 9000

  # List the template library
  store-workflows templates --category inventory

  # Check a workflow definition
  store-workflows validate workflow.yaml

  # Execute a workflow once with sample trigger data
  store-workflows run workflow.yaml --data '{"new_record": {"quantity": 5}}'
        """,
    )

    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s v{__version__}",
        help="Show program's version number and exit",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the engine and HTTP receiver")
    _add_config_argument(serve_parser)
    serve_parser.add_argument("--host", default=None, help="Override the bind host")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Override the port")
    serve_parser.add_argument(
        "-d",
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    # templates
    templates_parser = subparsers.add_parser("templates", help="List workflow templates")
    _add_config_argument(templates_parser)
    templates_parser.add_argument("--category", default=None, help="Filter by category")
    templates_parser.add_argument(
        "--show", metavar="TEMPLATE_ID", default=None, help="Show one template's variables"
    )

    # validate
    validate_parser = subparsers.add_parser("validate", help="Validate a workflow file")
    validate_parser.add_argument("file", help="YAML or JSON workflow definition")

    # run
    run_parser = subparsers.add_parser("run", help="Execute a workflow file once")
    run_parser.add_argument("file", help="YAML or JSON workflow definition")
    _add_config_argument(run_parser)
    run_parser.add_argument(
        "--data",
        default="{}",
        help="Trigger data as a JSON object (default: {})",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        dest="as_json",
        help="Print the execution record as JSON",
    )

    return parser


__all__ = ["build_parser", "print_banner"]
