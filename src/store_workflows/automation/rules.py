"""Filter evaluation for trigger gates and action conditions.

All functions here are pure: they never perform I/O and never raise for an
ordinary mismatch. A filter list passes only when every filter passes.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from .models import FilterOperator, WorkflowFilter

_MISSING = object()


def get_field_value(context: Any, path: str) -> Any:
    """Resolve a dot path such as ``order.customer.email``.

    Integer segments index into lists. A missing segment yields ``None``.
    """
    value = lookup_path(context, path)
    return None if value is _MISSING else value


def lookup_path(context: Any, path: str) -> Any:
    """Resolve a dot path, returning a private sentinel when it is missing."""
    current = context
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return _MISSING
            current = current[part]
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return _MISSING
        elif hasattr(current, part) and not part.startswith("_"):
            current = getattr(current, part)
        else:
            return _MISSING
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) else number


def _strict_equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    return left == right


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).lower()


def _contains(field_value: Any, expected: Any) -> bool:
    if field_value is None or expected is None:
        return False
    if isinstance(field_value, (list, tuple, set)):
        needle = _text(expected)
        return any(_text(item) == needle for item in field_value)
    if isinstance(field_value, Mapping):
        return expected in field_value
    return _text(expected) in _text(field_value)


def _member(field_value: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple, set)):
        return False
    return any(_strict_equals(field_value, item) for item in expected)


def evaluate_filter(condition: WorkflowFilter | Mapping[str, Any], context: Any) -> bool:
    """Evaluate a single filter against a context."""
    if not isinstance(condition, WorkflowFilter):
        condition = WorkflowFilter.model_validate(condition)

    field_value = get_field_value(context, condition.field)
    expected = condition.value
    operator = condition.operator

    if operator == FilterOperator.EQUALS:
        return _strict_equals(field_value, expected)
    if operator == FilterOperator.NOT_EQUALS:
        return not _strict_equals(field_value, expected)
    if operator == FilterOperator.CONTAINS:
        return _contains(field_value, expected)
    if operator in (FilterOperator.GREATER_THAN, FilterOperator.LESS_THAN):
        left = _to_number(field_value)
        right = _to_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == FilterOperator.GREATER_THAN else left < right
    if operator == FilterOperator.IN:
        return _member(field_value, expected)
    if operator == FilterOperator.NOT_IN:
        return isinstance(expected, (list, tuple, set)) and not _member(field_value, expected)
    return False


def evaluate_filters(
    filters: Iterable[WorkflowFilter | Mapping[str, Any]] | None, context: Any
) -> bool:
    """Return True when every filter passes; an empty list always passes."""
    if not filters:
        return True
    return all(evaluate_filter(condition, context) for condition in filters)


def validate_filter(condition: Mapping[str, Any]) -> list[str]:
    """Check the shape of a raw filter mapping.

    Returns:
        Error messages, empty when the filter is well formed
    """
    errors: list[str] = []
    field_name = condition.get("field")
    if not field_name or not isinstance(field_name, str):
        errors.append("Filter field is required")
    operator = condition.get("operator")
    valid_operators = [op.value for op in FilterOperator]
    if operator not in valid_operators:
        errors.append(f"Unknown filter operator: {operator}")
    elif operator in ("in", "not_in") and not isinstance(condition.get("value"), list):
        errors.append(f"'{operator}' filter value must be a list")
    return errors


def validate_filters(filters: Iterable[Mapping[str, Any]]) -> list[str]:
    errors: list[str] = []
    for index, condition in enumerate(filters, start=1):
        if not isinstance(condition, Mapping):
            errors.append(f"Filter {index}: must be an object")
            continue
        errors.extend(f"Filter {index}: {error}" for error in validate_filter(condition))
    return errors


FILTER_PRESETS: dict[str, list[dict[str, Any]]] = {
    "high_value_orders": [
        {"field": "total_price", "operator": "greater_than", "value": 100},
    ],
    "low_stock_products": [
        {"field": "quantity", "operator": "less_than", "value": 10},
        {"field": "status", "operator": "equals", "value": "active"},
    ],
    "new_customers": [
        {"field": "orders_count", "operator": "equals", "value": 0},
    ],
    "vip_customers": [
        {"field": "total_spent", "operator": "greater_than", "value": 1000},
    ],
    "abandoned_carts": [
        {"field": "status", "operator": "equals", "value": "abandoned"},
        {"field": "total_price", "operator": "greater_than", "value": 0},
    ],
}


def get_preset(name: str) -> list[WorkflowFilter]:
    """Return a named preset as filter models.

    Raises:
        KeyError: If the preset does not exist
    """
    return [WorkflowFilter.model_validate(item) for item in FILTER_PRESETS[name]]


__all__ = [
    "FILTER_PRESETS",
    "evaluate_filter",
    "evaluate_filters",
    "get_field_value",
    "get_preset",
    "is_missing",
    "lookup_path",
    "validate_filter",
    "validate_filters",
]
