"""Store Workflows.

A workflow automation engine for online stores:
- Filter-gated triggers on data changes, schedules, metric thresholds and webhooks
- Ordered actions for email, inventory, customers, integrations, exports and custom code
- Template library for common store automations
- Execution history, cooperative cancellation and per-store metrics

Example:
    ```python
    from store_workflows import WorkflowApp

    app = WorkflowApp.from_config("config.yaml")
    workflow_id = app.engine.create_workflow(
        app.engine.create_from_template(
            "low_inventory_alert", "store-1", {"admin_email": "ops@example.com"}
        )
    )
    app.run()
    ```
"""

from importlib.metadata import PackageNotFoundError, version

from .app import WorkflowApp
from .automation import WorkflowBuilder, WorkflowEngine
from .core import EngineSettings, get_logger, setup_logging

__all__ = [
    "__version__",
    "EngineSettings",
    "WorkflowApp",
    "WorkflowBuilder",
    "WorkflowEngine",
    "get_logger",
    "setup_logging",
]

try:  # pragma: no cover - best-effort during development
    __version__ = version("store-workflows")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
