"""Demonstration of the workflow engine with in-memory storage.

This example demonstrates:
1. Creating a workflow from a built-in template
2. Event-based triggers with filters
3. Variable substitution in email actions
4. Cancelling a queued execution
5. Store metrics

Run this example:
    python examples/automation_demo.py
"""

import tempfile
import time

from store_workflows import EngineSettings, WorkflowApp
from store_workflows.core.config import ExportConfig, LoggingConfig, ServerConfig


def build_app() -> WorkflowApp:
    """An app with in-memory databases and no HTTP receiver."""
    settings = EngineSettings(
        logging=LoggingConfig(level="INFO"),
        server=ServerConfig(enabled=False),
        export=ExportConfig(directory=tempfile.mkdtemp(prefix="store-workflows-")),
    )
    return WorkflowApp(settings)


# ============================================================================
# Demo Functions
# ============================================================================


def demo_event_workflow(app: WorkflowApp) -> str:
    """Run a filtered external-event workflow end to end."""
    print("\n" + "=" * 70)
    print("Demo 1: Event-Based Workflow")
    print("=" * 70)

    workflow_id = app.engine.create_workflow(
        {
            "name": "High value order follow-up",
            "store_id": "demo-store",
            "trigger": {
                "name": "Order created",
                "type": "external_event",
                "config": {
                    "event_type": "order.created",
                    "filters": [{"field": "total_price", "operator": "greater_than", "value": 100}],
                },
            },
            "actions": [
                {
                    "name": "Thank the customer",
                    "type": "email",
                    "config": {
                        "recipient": "{{customer.email}}",
                        "subject": "Thanks for order #{{order_id}}",
                        "body": "Hi {{customer.name}}, your order of {{total_price}} is confirmed.",
                    },
                    "order": 1,
                },
                {
                    "name": "Tag as VIP",
                    "type": "customer",
                    "config": {"customer_id": "{{customer.id}}", "tags": ["vip"]},
                    "order": 2,
                },
            ],
        }
    )

    manager = app.engine.trigger_manager
    order = {
        "order_id": 1001,
        "total_price": 250,
        "customer": {"id": "c-1", "email": "ana@example.com", "name": "Ana"},
    }
    print("Matched:", manager.handle_external_event("order.created", order))
    small = manager.handle_external_event("order.created", {"total_price": 5})
    print("Matched small order:", small)

    time.sleep(1)
    for execution in app.engine.get_executions(workflow_id):
        print(f"  execution {execution.id}: {execution.status.value}")
    print("  tags:", app.store_data.get_tags("demo-store", "c-1"))
    return workflow_id


def demo_template(app: WorkflowApp) -> None:
    """Instantiate a template and run it manually."""
    print("\n" + "=" * 70)
    print("Demo 2: Templates")
    print("=" * 70)

    for template in app.engine.get_templates(category="inventory"):
        print(f"  {template.id:<28} {template.name}")

    definition = app.engine.create_from_template(
        "low_inventory_alert", "demo-store", {"admin_email": "ops@example.com"}
    )
    definition["enabled"] = False
    workflow_id = app.engine.create_workflow(definition)
    execution_id = app.engine.execute_workflow(workflow_id, {"current_stock": 3})
    execution = app.engine.get_execution(execution_id)
    print(f"Manual run: {execution.status.value}")
    for log in app.store_data.list_email_logs("demo-store"):
        print(f"  email to {log['recipient']}: {log['subject']}")


def demo_metrics(app: WorkflowApp) -> None:
    """Print store metrics."""
    print("\n" + "=" * 70)
    print("Demo 3: Metrics")
    print("=" * 70)

    metrics = app.engine.get_metrics("demo-store", "24h")
    for key in ("total_workflows", "active_workflows", "total_executions", "success_rate"):
        print(f"  {key}: {metrics[key]}")


def main() -> None:
    app = build_app()
    app.start(serve=False)
    try:
        demo_event_workflow(app)
        demo_template(app)
        demo_metrics(app)
    finally:
        app.stop()


if __name__ == "__main__":
    main()
