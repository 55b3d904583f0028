"""``{{dot.path}}`` substitution over JSON-like values."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from ..core.logger import get_logger
from .rules import is_missing, lookup_path

logger = get_logger("automation.variables")

TOKEN_PATTERN = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


class VariableResolver:
    """Resolve tokens against a context, falling back to nested scopes.

    A token is looked up at the context root first and then inside each
    fallback scope in order, so ``{{customer_email}}`` finds
    ``trigger_data.customer_email`` when the root has no such key.
    """

    def __init__(
        self,
        context: Mapping[str, Any],
        fallback_scopes: tuple[str, ...] = ("trigger_data",),
        log_unresolved: bool = True,
    ) -> None:
        self.context = context
        self.fallback_scopes = fallback_scopes
        self.log_unresolved = log_unresolved
        self.unresolved: list[str] = []

    def resolve(self, path: str) -> Any:
        """Return the value for ``path`` or the missing sentinel."""
        value = lookup_path(self.context, path)
        if not is_missing(value):
            return value
        for scope in self.fallback_scopes:
            scoped = self.context.get(scope)
            if isinstance(scoped, Mapping):
                value = lookup_path(scoped, path)
                if not is_missing(value):
                    return value
        return value

    def substitute(self, value: Any) -> Any:
        if isinstance(value, str):
            return self._substitute_str(value)
        if isinstance(value, Mapping):
            return {key: self.substitute(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.substitute(item) for item in value]
        return value

    def _substitute_str(self, text: str) -> Any:
        whole = TOKEN_PATTERN.fullmatch(text.strip()) if "{{" in text else None
        if whole is not None:
            resolved = self.resolve(whole.group(1))
            if is_missing(resolved):
                self._note_unresolved(whole.group(1))
                return text
            return resolved

        def replace(match: re.Match[str]) -> str:
            resolved = self.resolve(match.group(1))
            if is_missing(resolved):
                self._note_unresolved(match.group(1))
                return match.group(0)
            return _render(resolved)

        return TOKEN_PATTERN.sub(replace, text)

    def _note_unresolved(self, path: str) -> None:
        self.unresolved.append(path)
        if self.log_unresolved:
            logger.warning("Unresolved variable left in place: {{%s}}", path)


def substitute(
    value: Any,
    context: Mapping[str, Any],
    fallback_scopes: tuple[str, ...] = ("trigger_data",),
) -> Any:
    """Replace every ``{{path}}`` token inside ``value``.

    A string made of exactly one token takes the resolved value's own type,
    so ``"{{quantity}}"`` can produce an int. Tokens embedded in longer text
    are rendered as text. Unresolved tokens are kept verbatim.
    """
    return VariableResolver(context, fallback_scopes).substitute(value)


def find_tokens(value: Any) -> list[str]:
    """List every token path referenced inside ``value``."""
    if isinstance(value, str):
        return TOKEN_PATTERN.findall(value)
    if isinstance(value, Mapping):
        return [token for item in value.values() for token in find_tokens(item)]
    if isinstance(value, (list, tuple)):
        return [token for item in value for token in find_tokens(item)]
    return []


__all__ = ["TOKEN_PATTERN", "VariableResolver", "find_tokens", "substitute"]
