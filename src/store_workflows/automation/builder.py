"""Workflow validation and template instantiation."""

from __future__ import annotations

import copy
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import TemplateNotFoundError, ValidationError
from ..core.logger import get_logger
from ..scheduler import build_cron_trigger
from .models import (
    ACTION_CONFIG_MODELS,
    TRIGGER_CONFIG_MODELS,
    ActionType,
    TriggerType,
    Workflow,
    new_id,
)
from .rules import validate_filters
from .templates import (
    TemplateVariable,
    WorkflowTemplate,
    WorkflowTemplateRegistry,
    create_default_template_registry,
)
from .variables import VariableResolver

if TYPE_CHECKING:
    from ..persistence.workflows import WorkflowRepository

logger = get_logger("automation.builder")

_TRIGGER_REQUIRED = {
    TriggerType.DATA_CHANGE: "Table is required for data change triggers",
    TriggerType.TIME_BASED: "Schedule is required for time-based triggers",
    TriggerType.THRESHOLD: "Metric, operator, and value are required for threshold triggers",
    TriggerType.EXTERNAL_EVENT: "Event type is required for external event triggers",
}


@dataclass
class ValidationResult:
    """Outcome of validating a workflow definition."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": self.errors, "warnings": self.warnings}


def _pydantic_messages(exc: PydanticValidationError) -> list[str]:
    messages = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        message = str(error.get("msg", "invalid value"))
        message = message.removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return messages


def _config_errors(model: type, config: Any) -> list[str]:
    if not isinstance(config, dict):
        return ["Config must be an object"]
    try:
        model.model_validate(config)
    except PydanticValidationError as exc:
        return _pydantic_messages(exc)
    return []


class WorkflowBuilder:
    """Validates workflow documents and instantiates templates."""

    def __init__(
        self,
        registry: WorkflowTemplateRegistry | None = None,
        repository: WorkflowRepository | None = None,
    ) -> None:
        self.registry = registry or create_default_template_registry()
        self.repository = repository

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_workflow(self, definition: dict[str, Any] | Workflow) -> ValidationResult:
        """Structurally validate a workflow definition.

        Returns a result instead of raising; errors block creation while
        warnings (such as ambiguous action order) do not.
        """
        if isinstance(definition, Workflow):
            definition = definition.model_dump(mode="json")
        errors: list[str] = []
        warnings: list[str] = []

        name = definition.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append("Workflow name is required")
        if not definition.get("store_id"):
            errors.append("Store ID is required")

        trigger = definition.get("trigger")
        if not trigger:
            errors.append("Trigger is required")
        elif not isinstance(trigger, dict):
            errors.append("Trigger: must be an object")
        else:
            errors.extend(f"Trigger: {error}" for error in self.validate_trigger(trigger))

        actions = definition.get("actions")
        if not actions:
            errors.append("At least one action is required")
        elif not isinstance(actions, list):
            errors.append("Actions must be a list")
        else:
            for index, action in enumerate(actions, start=1):
                if not isinstance(action, dict):
                    errors.append(f"Action {index}: must be an object")
                    continue
                errors.extend(f"Action {index}: {error}" for error in self.validate_action(action))
            errors.extend(self._check_action_ids(actions))
            warnings.extend(self._check_order_ties(actions))

        if not errors:
            try:
                Workflow.model_validate(definition)
            except PydanticValidationError as exc:
                errors.extend(_pydantic_messages(exc))

        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    def validate_trigger(self, trigger: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        name = trigger.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append("Trigger name is required")

        try:
            trigger_type = TriggerType(trigger.get("type"))
        except ValueError:
            errors.append(f"Unknown trigger type: {trigger.get('type')}")
            return errors

        config = trigger.get("config") or {}
        config_errors = _config_errors(TRIGGER_CONFIG_MODELS[trigger_type], config)
        if config_errors:
            errors.append(_TRIGGER_REQUIRED[trigger_type])
            errors.extend(config_errors)
        elif trigger_type == TriggerType.TIME_BASED:
            try:
                build_cron_trigger(config["schedule"], config.get("timezone") or "UTC")
            except ValueError as e:
                errors.append(str(e))

        if isinstance(config, dict) and config.get("filters"):
            errors.extend(validate_filters(config["filters"]))
        return errors

    def validate_action(self, action: dict[str, Any]) -> list[str]:
        errors: list[str] = []
        name = action.get("name")
        if not isinstance(name, str) or not name.strip():
            errors.append("Action name is required")

        order = action.get("order")
        if not isinstance(order, int) or isinstance(order, bool) or order < 0:
            errors.append("Action order must be a non-negative number")

        try:
            action_type = ActionType(action.get("type"))
        except ValueError:
            errors.append(f"Unknown action type: {action.get('type')}")
            return errors

        errors.extend(_config_errors(ACTION_CONFIG_MODELS[action_type], action.get("config") or {}))

        if action.get("conditions"):
            errors.extend(validate_filters(action["conditions"]))
        return errors

    @staticmethod
    def _check_action_ids(actions: list[Any]) -> list[str]:
        ids = [a.get("id") for a in actions if isinstance(a, dict) and a.get("id")]
        return [
            f"Duplicate action id: {action_id}"
            for action_id, count in Counter(ids).items()
            if count > 1
        ]

    @staticmethod
    def _check_order_ties(actions: list[Any]) -> list[str]:
        orders = [a.get("order") for a in actions if isinstance(a, dict)]
        return [
            f"{count} actions share order {order}; they run in list position order"
            for order, count in Counter(o for o in orders if isinstance(o, int)).items()
            if count > 1
        ]

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def get_templates(self, category: str | None = None) -> list[WorkflowTemplate]:
        """Built-in templates followed by persisted custom templates."""
        templates = self.registry.list_templates(category=category)
        if self.repository is not None:
            known = {t.id for t in templates}
            for data in self.repository.list_templates():
                template = WorkflowTemplate.from_dict(data)
                if template.id not in known and (not category or template.category == category):
                    templates.append(template)
        return templates

    def get_template(self, template_id: str) -> WorkflowTemplate | None:
        template = self.registry.get(template_id)
        if template is None and self.repository is not None:
            data = self.repository.get_template(template_id)
            template = WorkflowTemplate.from_dict(data) if data else None
        return template

    def save_template(self, template: WorkflowTemplate) -> None:
        """Persist a custom template.

        Raises:
            RuntimeError: If the builder has no repository
        """
        if self.repository is None:
            raise RuntimeError("Saving templates requires a repository")
        self.repository.save_template(template.to_dict())
        logger.info("Saved custom template: %s", template.id)

    def create_from_template(
        self, template_id: str, store_id: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Instantiate a template into a workflow definition.

        The result is not validated; pass it to ``validate_workflow`` or
        straight to the engine, which validates before creating.

        Raises:
            TemplateNotFoundError: If the template does not exist
            ValidationError: If a variable is missing or has the wrong type
        """
        template = self.get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(template_id)

        values = self._prepare_variables(template.variables, dict(variables or {}))
        resolver = VariableResolver(values, fallback_scopes=(), log_unresolved=False)
        definition = resolver.substitute(copy.deepcopy(template.template))

        definition["id"] = new_id()
        definition["store_id"] = store_id
        definition.setdefault("enabled", True)
        definition.setdefault("tags", list(template.tags))
        trigger = definition.get("trigger") or {}
        trigger["id"] = new_id()
        trigger.setdefault("enabled", True)
        for action in definition.get("actions") or []:
            action["id"] = new_id()
        logger.info("Instantiated template %s for store %s", template_id, store_id)
        return definition

    def _prepare_variables(
        self, declared: list[TemplateVariable], values: dict[str, Any]
    ) -> dict[str, Any]:
        errors: list[str] = []
        for variable in declared:
            if variable.key not in values and variable.default_value is not None:
                values[variable.key] = variable.default_value
            if variable.key not in values:
                if variable.required:
                    errors.append(f"Required variable missing: {variable.key}")
                continue

            value = values[variable.key]
            if variable.type == "number":
                coerced = _as_number(value)
                if coerced is None:
                    errors.append(f"Variable {variable.key} must be a number")
                else:
                    values[variable.key] = coerced
            elif variable.type == "boolean" and not isinstance(value, bool):
                errors.append(f"Variable {variable.key} must be a boolean")
            elif variable.type == "select" and variable.options:
                if value not in variable.option_values():
                    errors.append(f"Variable {variable.key} must be one of the allowed options")
            elif variable.type == "multi_select" and variable.options:
                allowed = variable.option_values()
                if not isinstance(value, list) or any(item not in allowed for item in value):
                    errors.append(f"Variable {variable.key} must be one of the allowed options")
        if errors:
            raise ValidationError(errors)
        return values

    def new_workflow(self, name: str, store_id: str) -> dict[str, Any]:
        """A blank, disabled workflow definition with a default trigger."""
        return {
            "id": new_id(),
            "name": name,
            "description": "",
            "store_id": store_id,
            "trigger": {
                "id": new_id(),
                "name": "Data Change Trigger",
                "type": "data_change",
                "config": {"table": "products", "operation": "update"},
                "enabled": True,
            },
            "actions": [],
            "enabled": False,
            "tags": [],
        }


def _as_number(value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            number = float(value)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    return None


__all__ = ["ValidationResult", "WorkflowBuilder"]
