"""Workflow CLI commands: templates, validate, run."""

from __future__ import annotations

import argparse
import json

from rich.console import Console
from rich.table import Table

from ...automation import WorkflowBuilder
from ...core import WorkflowError
from ..base import WorkflowApp, load_document, load_settings, logger

STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
    "running": "cyan",
}


def cmd_templates(args: argparse.Namespace) -> int:
    """List the template library, or one template's variables.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    console = Console()
    builder = WorkflowBuilder()

    if args.show:
        template = builder.get_template(args.show)
        if template is None:
            console.print(f"[red]Template not found: {args.show}[/]")
            return 1
        console.print(f"[bold]{template.name}[/] [dim]({template.id})[/]")
        console.print(template.description)
        table = Table(title="Variables")
        table.add_column("Key", style="cyan")
        table.add_column("Type")
        table.add_column("Required")
        table.add_column("Default")
        table.add_column("Description")
        for variable in template.variables:
            table.add_row(
                variable.key,
                variable.type,
                "yes" if variable.required else "no",
                "" if variable.default_value is None else str(variable.default_value),
                variable.description,
            )
        console.print(table)
        return 0

    templates = builder.get_templates(args.category)
    table = Table(title="Workflow Templates")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Category")
    table.add_column("Trigger")
    table.add_column("Actions", justify="right")
    for template in templates:
        trigger = template.template.get("trigger") or {}
        table.add_row(
            template.id,
            template.name,
            template.category,
            str(trigger.get("type", "")),
            str(len(template.template.get("actions") or [])),
        )
    console.print(table)
    console.print(f"[dim]{len(templates)} templates[/]")
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a workflow definition file.

    Args:
        args: Parsed arguments

    Returns:
        Exit code, 1 when the definition has errors
    """
    console = Console()
    try:
        definition = load_document(args.file)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]Error:[/] {exc}")
        return 1
    if not isinstance(definition, dict):
        console.print("[red]Error:[/] workflow file must contain a mapping")
        return 1

    result = WorkflowBuilder().validate_workflow(definition)
    for error in result.errors:
        console.print(f"[red]✗[/] {error}")
    for warning in result.warnings:
        console.print(f"[yellow]![/] {warning}")
    if result.valid:
        console.print(f"[green]✓[/] {definition.get('name')} is valid")
        return 0
    return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a workflow file once in-process and print its results.

    Args:
        args: Parsed arguments

    Returns:
        Exit code, 1 unless the execution completed
    """
    console = Console()
    try:
        definition = load_document(args.file)
        trigger_data = json.loads(args.data)
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]Error:[/] {exc}")
        return 1
    if not isinstance(definition, dict):
        console.print("[red]Error:[/] workflow file must contain a mapping")
        return 1

    app = WorkflowApp(settings)
    try:
        # Disabled so no trigger is registered; manual execution ignores the flag.
        workflow_id = app.engine.create_workflow({**definition, "enabled": False})
        execution_id = app.engine.execute_workflow(workflow_id, trigger_data)
        execution = app.engine.get_execution(execution_id)
    except WorkflowError as exc:
        console.print(f"[red]Error:[/] {exc}")
        return 1
    finally:
        app.stop()

    if execution is None:
        logger.error("Execution %s was not recorded", execution_id)
        return 1

    if args.as_json:
        console.print_json(data=execution.to_dict())
    else:
        style = STATUS_STYLES.get(execution.status.value, "white")
        console.print(f"Execution [bold]{execution.id}[/]: [{style}]{execution.status.value}[/]")
        table = Table(title="Action Results")
        table.add_column("Action", style="cyan")
        table.add_column("Status")
        table.add_column("Result / Error")
        for result in execution.action_results:
            result_style = STATUS_STYLES.get(result.status.value, "white")
            detail = result.error or json.dumps(result.result, default=str)
            table.add_row(result.action_id, f"[{result_style}]{result.status.value}[/]", detail)
        console.print(table)
        if execution.error:
            console.print(f"[red]{execution.error}[/]")

    return 0 if execution.status.value == "completed" else 1


__all__ = ["cmd_run", "cmd_templates", "cmd_validate"]
