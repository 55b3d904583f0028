"""FastAPI receiver for inbound events and execution queries."""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING, Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request

from .core.config import ServerConfig
from .core.exceptions import ValidationError
from .core.logger import get_logger

if TYPE_CHECKING:
    from .automation.engine import WorkflowEngine

logger = get_logger("server")


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="JSON body must be an object")
    return payload


def create_app(engine: WorkflowEngine) -> FastAPI:
    """Build the HTTP API around a running engine."""
    app = FastAPI(title="Store Workflows")

    @app.get("/healthz")
    def health() -> dict[str, Any]:
        return {"status": "ok", "queued": engine.queue.qsize()}

    @app.post("/webhooks/{event_type}")
    async def receive_event(event_type: str, request: Request) -> dict[str, Any]:
        payload = await _json_body(request)
        fired = await asyncio.to_thread(
            engine.trigger_manager.handle_external_event, event_type, payload
        )
        logger.info("Webhook %s matched %d workflows", event_type, len(fired))
        return {"status": "ok", "workflows": fired}

    @app.post("/data-changes")
    async def receive_data_change(request: Request) -> dict[str, Any]:
        payload = await _json_body(request)
        table = payload.get("table")
        operation = payload.get("operation")
        if not isinstance(table, str) or not isinstance(operation, str):
            raise HTTPException(status_code=400, detail="table and operation are required")
        fired = await asyncio.to_thread(
            engine.trigger_manager.notify_data_change,
            table,
            operation,
            new_record=payload.get("new_record"),
            old_record=payload.get("old_record"),
            store_id=payload.get("store_id"),
        )
        return {"status": "ok", "workflows": fired}

    @app.get("/workflows/{workflow_id}/executions")
    def list_executions(
        workflow_id: str, limit: int = Query(default=50, ge=1, le=500)
    ) -> list[dict[str, Any]]:
        if engine.get_workflow(workflow_id) is None:
            raise HTTPException(status_code=404, detail="Workflow not found")
        return [execution.to_dict() for execution in engine.get_executions(workflow_id, limit)]

    @app.get("/executions/{execution_id}")
    def get_execution(execution_id: str) -> dict[str, Any]:
        execution = engine.get_execution(execution_id)
        if execution is None:
            raise HTTPException(status_code=404, detail="Execution not found")
        return execution.to_dict()

    @app.post("/executions/{execution_id}/cancel")
    def cancel_execution(execution_id: str) -> dict[str, Any]:
        if not engine.cancel_execution(execution_id):
            raise HTTPException(status_code=409, detail="Execution is not cancellable")
        return {"status": "cancelling", "execution_id": execution_id}

    @app.get("/metrics/{store_id}")
    def metrics(
        store_id: str, time_range: str = Query(default="7d", alias="range")
    ) -> dict[str, Any]:
        try:
            return engine.get_metrics(store_id, time_range)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app


class EventServer:
    """Runs the API under uvicorn on a background thread."""

    def __init__(self, config: ServerConfig, engine: WorkflowEngine) -> None:
        self._config = config
        self.app = create_app(engine)
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread or not self._config.enabled:
            return

        config = uvicorn.Config(
            self.app,
            host=self._config.host,
            port=self._config.port,
            log_level="info",
        )
        self._server = uvicorn.Server(config)

        def _run() -> None:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                server = self._server
                if server is None:
                    logger.error("Event server thread started without a uvicorn server instance")
                    return
                loop.run_until_complete(server.serve())
            finally:
                loop.close()

        self._thread = threading.Thread(target=_run, name="workflow-event-server", daemon=True)
        self._thread.start()
        logger.info(
            "Event server listening on http://%s:%s", self._config.host, self._config.port
        )

    def stop(self) -> None:
        if self._server:
            self._server.should_exit = True
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("Event server stopped")

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())


__all__ = ["EventServer", "create_app"]
