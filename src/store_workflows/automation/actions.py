"""Action executors for workflow steps.

One executor class per action type performs the side effect through its
collaborator and returns a JSON-like result. Any failure surfaces as
``ActionExecutionError``; the executor never retries and never touches
execution status.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from ..core.exceptions import ActionExecutionError
from ..core.logger import get_logger
from ..persistence.store_data import StoreDataRepository
from .collaborators import (
    EmailSender,
    ExportSink,
    FunctionRegistry,
    IntegrationDispatcher,
    serialize_rows,
)
from .models import ActionType, WorkflowAction
from .rules import get_field_value
from .variables import substitute

logger = get_logger("automation.actions")


class BaseActionExecutor(ABC):
    """Base class for action executors."""

    action_type: ActionType

    @abstractmethod
    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        """Perform the action.

        Args:
            action: Action definition
            context: Execution context (trigger_data, store_id, shared_data, ids)

        Returns:
            JSON-like result stored in the action's result record
        """

    def resolve_config(
        self, action: WorkflowAction, context: dict[str, Any], exclude: set[str] | None = None
    ) -> dict[str, Any]:
        """The action config with every ``{{path}}`` token substituted."""
        raw = action.config.model_dump()
        kept = {key: raw.pop(key) for key in (exclude or set()) if key in raw}
        resolved = substitute(raw, context)
        resolved.update(kept)
        return resolved

    def fail(self, action: WorkflowAction, message: str) -> ActionExecutionError:
        return ActionExecutionError(message, action_id=action.id, action_type=action.type.value)


class EmailActionExecutor(BaseActionExecutor):
    """Render and send an email."""

    action_type = ActionType.EMAIL

    def __init__(self, sender: EmailSender) -> None:
        self.sender = sender

    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        config = self.resolve_config(action, context)
        recipient = config.get("recipient")
        subject = str(config.get("subject") or "")
        body = str(config.get("body") or "")
        template_id = config.get("template_id")

        sent = self.sender.send(
            context.get("store_id", ""),
            str(recipient) if recipient is not None else None,
            subject,
            body,
            template_id=template_id,
        )
        return {"recipient": recipient, "subject": subject, "template_id": template_id, **sent}


def _trigger_value(context: dict[str, Any], *paths: str) -> Any:
    trigger_data = context.get("trigger_data") or {}
    for path in paths:
        value = get_field_value(trigger_data, path)
        if value not in (None, ""):
            return value
    return None


class InventoryActionExecutor(BaseActionExecutor):
    """Reorder, reprice or change the status of products."""

    action_type = ActionType.INVENTORY

    DEFAULT_REORDER_QUANTITY = 100

    def __init__(self, store_data: StoreDataRepository) -> None:
        self.store_data = store_data

    def _product_ids(self, config: dict[str, Any], context: dict[str, Any]) -> list[str]:
        product_ids = [str(pid) for pid in config.get("product_ids") or [] if pid not in (None, "")]
        if product_ids:
            return product_ids
        inferred = _trigger_value(context, "product_id", "new_record.id")
        return [str(inferred)] if inferred is not None else []

    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        config = self.resolve_config(action, context)
        store_id = context.get("store_id", "")
        operation = config["operation"]
        parameters = config.get("parameters") or {}

        product_ids = self._product_ids(config, context)
        if not product_ids:
            raise self.fail(action, "No product IDs configured or found in trigger data")

        results = []
        for product_id in product_ids:
            if operation == "reorder":
                results.append(self._reorder(store_id, product_id, parameters, action))
            elif operation == "price_update":
                results.append(self._price_update(store_id, product_id, parameters, action))
            elif operation == "status_change":
                results.append(self._status_change(store_id, product_id, parameters, action))
            else:
                raise self.fail(action, f"Unknown inventory operation: {operation}")

        return {
            "operation": operation,
            "products": results,
            "updated": sum(1 for item in results if item["status"] != "not_found"),
        }

    def _reorder(
        self, store_id: str, product_id: str, parameters: dict[str, Any], action: WorkflowAction
    ) -> dict[str, Any]:
        try:
            quantity = int(parameters.get("quantity", self.DEFAULT_REORDER_QUANTITY))
        except (TypeError, ValueError) as e:
            quantity = parameters.get("quantity")
            raise self.fail(action, f"Invalid reorder quantity: {quantity}") from e
        request_id = self.store_data.create_reorder_request(store_id, product_id, quantity)
        return {
            "product_id": product_id,
            "status": "reorder_requested",
            "quantity": quantity,
            "request_id": request_id,
        }

    def _price_update(
        self, store_id: str, product_id: str, parameters: dict[str, Any], action: WorkflowAction
    ) -> dict[str, Any]:
        try:
            if "price" in parameters:
                new_price = float(parameters["price"])
                old_price = None
            elif "price_adjustment" in parameters:
                product = self.store_data.get_product(store_id, product_id)
                if product is None:
                    return {"product_id": product_id, "status": "not_found"}
                old_price = float(product["price"] or 0)
                adjustment = float(parameters["price_adjustment"])
                if parameters.get("adjustment_type", "percentage") == "percentage":
                    new_price = old_price * (1 + adjustment / 100)
                else:
                    new_price = old_price + adjustment
            else:
                raise self.fail(action, "price_update requires price or price_adjustment")
        except (TypeError, ValueError) as e:
            raise self.fail(action, f"Invalid price parameters: {e}") from e

        new_price = round(max(new_price, 0.0), 2)
        if not self.store_data.update_product(store_id, product_id, price=new_price):
            return {"product_id": product_id, "status": "not_found"}
        return {
            "product_id": product_id,
            "status": "price_updated",
            "old_price": old_price,
            "new_price": new_price,
        }

    def _status_change(
        self, store_id: str, product_id: str, parameters: dict[str, Any], action: WorkflowAction
    ) -> dict[str, Any]:
        status = parameters.get("status")
        if not status:
            raise self.fail(action, "status_change requires parameters.status")
        if not self.store_data.update_product(store_id, product_id, status=str(status)):
            return {"product_id": product_id, "status": "not_found"}
        return {"product_id": product_id, "status": "status_changed", "new_status": status}


class CustomerActionExecutor(BaseActionExecutor):
    """Add a customer to a segment and append tags."""

    action_type = ActionType.CUSTOMER

    def __init__(self, store_data: StoreDataRepository) -> None:
        self.store_data = store_data

    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        config = self.resolve_config(action, context)
        store_id = context.get("store_id", "")
        customer_id = config.get("customer_id") or _trigger_value(
            context, "customer_id", "new_record.customer_id"
        )
        if customer_id is None and (context.get("trigger_data") or {}).get("table") == "customers":
            customer_id = _trigger_value(context, "new_record.id")
        if customer_id is None:
            raise self.fail(action, "No customer ID configured or found in trigger data")
        customer_id = str(customer_id)

        segment = config.get("segment")
        tags = [str(tag) for tag in config.get("tags") or []]
        if segment:
            self.store_data.add_to_segment(store_id, customer_id, str(segment))
        if tags:
            self.store_data.add_tags(store_id, customer_id, tags)
        return {"customer_id": customer_id, "segment": segment, "tags_added": tags}


class IntegrationActionExecutor(BaseActionExecutor):
    """Send a payload to Slack, Discord, a webhook or an API."""

    action_type = ActionType.INTEGRATION

    def __init__(self, dispatcher: IntegrationDispatcher) -> None:
        self.dispatcher = dispatcher

    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        config = self.resolve_config(action, context)
        return self.dispatcher.dispatch(
            config["service"],
            config.get("endpoint"),
            config.get("payload") or {},
            method=config.get("method") or "POST",
            headers=config.get("headers") or {},
        )


class DataExportActionExecutor(BaseActionExecutor):
    """Serialize store rows and hand them to the export sink."""

    action_type = ActionType.DATA_EXPORT

    DEFAULT_TABLE = "products"

    def __init__(self, store_data: StoreDataRepository, sink: ExportSink) -> None:
        self.store_data = store_data
        self.sink = sink

    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        config = self.resolve_config(action, context)
        store_id = context.get("store_id", "")
        table = config.get("table") or _trigger_value(context, "table") or self.DEFAULT_TABLE
        fmt = config["format"]

        try:
            rows = self.store_data.select_rows(str(table), store_id)
        except ValueError as e:
            raise self.fail(action, str(e)) from e
        content = serialize_rows(rows, fmt)
        destination = config.get("destination") or "file"
        delivery = self.sink.deliver(store_id, str(table), fmt, content, destination)
        return {"table": table, "format": fmt, "row_count": len(rows), **delivery}


class CustomActionExecutor(BaseActionExecutor):
    """Call a registered function or, when allowed, run an inline script."""

    action_type = ActionType.CUSTOM

    SAFE_BUILTINS = {
        "abs": abs,
        "all": all,
        "any": any,
        "bool": bool,
        "dict": dict,
        "enumerate": enumerate,
        "filter": filter,
        "float": float,
        "int": int,
        "isinstance": isinstance,
        "len": len,
        "list": list,
        "map": map,
        "max": max,
        "min": min,
        "range": range,
        "round": round,
        "sorted": sorted,
        "str": str,
        "sum": sum,
        "tuple": tuple,
        "zip": zip,
    }

    def __init__(self, functions: FunctionRegistry, allow_scripts: bool = False) -> None:
        self.functions = functions
        self.allow_scripts = allow_scripts

    def execute(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        config = self.resolve_config(action, context, exclude={"script"})
        parameters = config.get("parameters") or {}

        function_name = config.get("function_name")
        if function_name:
            func = self.functions.get(str(function_name))
            if func is None:
                raise self.fail(action, f"Unknown custom function: {function_name}")
            return func(context, parameters)

        if not self.allow_scripts:
            raise self.fail(action, "Inline scripts are disabled in this deployment")
        return self._run_script(config["script"], context, parameters)

    def _run_script(self, script: str, context: dict[str, Any], parameters: dict[str, Any]) -> Any:
        exec_globals: dict[str, Any] = {
            "__builtins__": self.SAFE_BUILTINS,
            "context": dict(context),
            "parameters": parameters,
            "datetime": datetime,
        }
        exec_locals: dict[str, Any] = {}
        exec(script, exec_globals, exec_locals)
        return exec_locals.get("result")


class ActionExecutor:
    """Dispatches actions to the executor registered for their type."""

    def __init__(self, executors: list[BaseActionExecutor]) -> None:
        self._executors: dict[ActionType, BaseActionExecutor] = {
            executor.action_type: executor for executor in executors
        }

    def register(self, executor: BaseActionExecutor) -> None:
        self._executors[executor.action_type] = executor

    def execute_action(self, action: WorkflowAction, context: dict[str, Any]) -> Any:
        """Run one action.

        Raises:
            ActionExecutionError: If the action fails for any reason
        """
        executor = self._executors.get(action.type)
        if executor is None:
            raise ActionExecutionError(
                f"No executor registered for action type: {action.type.value}",
                action_id=action.id,
                action_type=action.type.value,
            )

        start = time.monotonic()
        try:
            result = executor.execute(action, context)
        except ActionExecutionError:
            raise
        except Exception as e:
            raise ActionExecutionError(
                f"{type(e).__name__}: {e}", action_id=action.id, action_type=action.type.value
            ) from e
        logger.debug(
            "Action %s (%s) finished in %.3fs",
            action.id,
            action.type.value,
            time.monotonic() - start,
        )
        return result


__all__ = [
    "ActionExecutor",
    "BaseActionExecutor",
    "CustomActionExecutor",
    "CustomerActionExecutor",
    "DataExportActionExecutor",
    "EmailActionExecutor",
    "IntegrationActionExecutor",
    "InventoryActionExecutor",
]
