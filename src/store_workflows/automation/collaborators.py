"""Side-effect collaborators used by the action executors.

Each collaborator is described by a small Protocol so deployments can plug
in real senders. The defaults here cover local operation: store data in
SQLite, HTTP dispatch through httpx, and file exports on disk.
"""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import httpx

from ..core.config import HTTPClientConfig
from ..core.config import IntegrationConfig as IntegrationSettings
from ..core.logger import get_logger
from ..persistence.store_data import StoreDataRepository

logger = get_logger("automation.collaborators")


class EmailSender(Protocol):
    def send(
        self,
        store_id: str,
        recipient: str | None,
        subject: str,
        body: str,
        template_id: str | None = None,
        attachment: Any = None,
    ) -> dict[str, Any]: ...


class IntegrationDispatcher(Protocol):
    def dispatch(
        self,
        service: str,
        endpoint: str | None,
        payload: dict[str, Any],
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]: ...


class ExportSink(Protocol):
    def deliver(
        self, store_id: str, table: str, fmt: str, content: str, destination: str
    ) -> dict[str, Any]: ...


class LoggingEmailSender:
    """Records outgoing email in the store's email log instead of sending it."""

    def __init__(self, store_data: StoreDataRepository) -> None:
        self.store_data = store_data

    def send(
        self,
        store_id: str,
        recipient: str | None,
        subject: str,
        body: str,
        template_id: str | None = None,
        attachment: Any = None,
    ) -> dict[str, Any]:
        log_id = self.store_data.log_email(
            store_id,
            recipient,
            subject,
            body,
            template_id=template_id,
            attachment=attachment,
        )
        logger.info("Email queued for %s (log %s)", recipient or template_id, log_id)
        return {"log_id": log_id, "status": "sent"}


class HTTPIntegrationDispatcher:
    """Posts integration payloads with a bounded timeout.

    Slack and Discord fall back to the configured incoming webhook URLs
    when the action has no endpoint of its own.
    """

    def __init__(
        self,
        http_config: HTTPClientConfig | None = None,
        integrations: IntegrationSettings | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.http_config = http_config or HTTPClientConfig()
        self.integrations = integrations or IntegrationSettings()
        self._client = client or httpx.Client(
            timeout=self.http_config.timeout,
            headers={"User-Agent": self.http_config.user_agent},
        )

    def _resolve_endpoint(self, service: str, endpoint: str | None) -> str:
        if endpoint:
            return endpoint
        if service == "slack" and self.integrations.slack_webhook_url:
            return self.integrations.slack_webhook_url
        if service == "discord" and self.integrations.discord_webhook_url:
            return self.integrations.discord_webhook_url
        raise ValueError(f"No endpoint configured for {service} integration")

    def _shape_payload(self, service: str, payload: dict[str, Any]) -> dict[str, Any]:
        if service == "slack" and "text" not in payload and "message" in payload:
            return {**payload, "text": payload["message"]}
        if service == "discord" and "content" not in payload and "message" in payload:
            return {**payload, "content": payload["message"]}
        return payload

    def dispatch(
        self,
        service: str,
        endpoint: str | None,
        payload: dict[str, Any],
        method: str = "POST",
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        url = self._resolve_endpoint(service, endpoint)
        body = self._shape_payload(service, payload)
        response = self._client.request(method.upper(), url, json=body, headers=headers or {})
        response.raise_for_status()

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text
        logger.info("%s integration delivered to %s (%s)", service, url, response.status_code)
        return {"service": service, "status_code": response.status_code, "response": data}

    def close(self) -> None:
        self._client.close()


def serialize_rows(rows: list[dict[str, Any]], fmt: str) -> str:
    """Render rows as JSON or CSV text."""
    if fmt == "json":
        return json.dumps(rows, indent=2, default=str)
    if fmt == "csv":
        buffer = io.StringIO()
        if rows:
            writer = csv.DictWriter(buffer, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)
        return buffer.getvalue()
    raise ValueError(f"Unsupported export format: {fmt}")


class FileExportSink:
    """Writes exports to disk, or emails them when the destination is ``email``."""

    def __init__(self, directory: str | Path, email_sender: EmailSender | None = None) -> None:
        self.directory = Path(directory)
        self.email_sender = email_sender

    def deliver(
        self, store_id: str, table: str, fmt: str, content: str, destination: str
    ) -> dict[str, Any]:
        filename = f"{store_id}_{table}_{datetime.now():%Y%m%d%H%M%S%f}.{fmt}"
        if destination == "email":
            if self.email_sender is None:
                raise ValueError("Email destination requires an email sender")
            self.email_sender.send(
                store_id,
                None,
                f"Data export: {table}",
                f"Attached: {filename}",
                template_id="data_export",
                attachment={"filename": filename, "content": content},
            )
            return {"destination": "email", "filename": filename}

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / filename
        path.write_text(content, encoding="utf-8")
        logger.info("Exported %s rows to %s", table, path)
        return {"destination": "file", "path": str(path)}


class StoreMetrics:
    """Metric provider for threshold triggers backed by store data."""

    def __init__(self, store_data: StoreDataRepository, low_stock_level: int = 10) -> None:
        self.store_data = store_data
        self.low_stock_level = low_stock_level
        self._metrics: dict[str, Callable[[str | None], float]] = {
            "low_inventory": lambda store_id: float(
                self.store_data.count_low_inventory(store_id, self.low_stock_level)
            ),
        }

    def register(self, name: str, func: Callable[[str | None], float]) -> None:
        self._metrics[name] = func

    def get_metric(self, metric: str, store_id: str | None) -> float:
        if metric not in self._metrics:
            raise KeyError(f"Unknown metric: {metric}")
        return self._metrics[metric](store_id)


CustomFunction = Callable[[dict[str, Any], dict[str, Any]], Any]


class FunctionRegistry:
    """Named functions callable from custom actions.

    A function receives ``(context, parameters)`` and returns a JSON-like
    result.
    """

    def __init__(self) -> None:
        self._functions: dict[str, CustomFunction] = {}

    def register(self, name: str, func: CustomFunction | None = None) -> Any:
        """Register a function, usable directly or as a decorator."""

        def decorator(fn: CustomFunction) -> CustomFunction:
            self._functions[name] = fn
            return fn

        if func is not None:
            return decorator(func)
        return decorator

    def get(self, name: str) -> CustomFunction | None:
        return self._functions.get(name)

    def names(self) -> list[str]:
        return sorted(self._functions)


def register_builtin_functions(
    registry: FunctionRegistry,
    store_data: StoreDataRepository,
    email_sender: EmailSender,
) -> FunctionRegistry:
    """Install the functions every deployment ships with."""

    @registry.register("notify_admin")
    def notify_admin(context: dict[str, Any], parameters: dict[str, Any]) -> Any:
        message = parameters.get("message") or f"Workflow {context.get('workflow_id')} ran"
        return email_sender.send(
            context.get("store_id", ""),
            parameters.get("recipient", "admin"),
            parameters.get("subject", "Workflow notification"),
            str(message),
        )

    @registry.register("backup_data")
    def backup_data(context: dict[str, Any], parameters: dict[str, Any]) -> Any:
        store_id = context.get("store_id", "")
        tables = parameters.get("tables") or ["products"]
        return {table: len(store_data.select_rows(table, store_id)) for table in tables}

    @registry.register("generate_report")
    def generate_report(context: dict[str, Any], parameters: dict[str, Any]) -> Any:
        store_id = context.get("store_id", "")
        products = store_data.select_rows("products", store_id)
        return {
            "generated_at": datetime.now().isoformat(),
            "product_count": len(products),
            "inventory_units": sum(int(p.get("quantity") or 0) for p in products),
            "inventory_value": round(
                sum(float(p.get("price") or 0) * int(p.get("quantity") or 0) for p in products), 2
            ),
        }

    @registry.register("process_inventory_file")
    def process_inventory_file(context: dict[str, Any], parameters: dict[str, Any]) -> Any:
        store_id = context.get("store_id", "")
        trigger_data = context.get("trigger_data") or {}
        rows = parameters.get("rows") or trigger_data.get("rows") or []
        updated, missing = 0, []
        for row in rows:
            product_id = str(row.get("product_id") or row.get("id") or "")
            if not product_id:
                continue
            fields = {key: row[key] for key in ("price", "quantity", "status") if key in row}
            if store_data.update_product(store_id, product_id, **fields):
                updated += 1
            else:
                missing.append(product_id)
        return {"updated": updated, "missing": missing}

    return registry


__all__ = [
    "CustomFunction",
    "EmailSender",
    "ExportSink",
    "FileExportSink",
    "FunctionRegistry",
    "HTTPIntegrationDispatcher",
    "IntegrationDispatcher",
    "LoggingEmailSender",
    "StoreMetrics",
    "register_builtin_functions",
    "serialize_rows",
]
