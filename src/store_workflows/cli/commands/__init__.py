"""CLI command handlers."""

from .serve import cmd_serve
from .workflows import cmd_run, cmd_templates, cmd_validate

__all__ = ["cmd_run", "cmd_serve", "cmd_templates", "cmd_validate"]
