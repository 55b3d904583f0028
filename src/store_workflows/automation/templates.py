"""Parameterized workflow templates.

A template body is a workflow definition whose strings may contain
``{{variable}}`` tokens. Tokens naming a template variable are filled in at
instantiation; any other token (``{{customer_email}}``) survives and is
resolved against the execution context at run time.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from typing import Any

from ..core.logger import get_logger

logger = get_logger("automation.templates")

VARIABLE_TYPES = ("string", "number", "boolean", "select", "multi_select")
TEMPLATE_CATEGORIES = ("inventory", "customer", "marketing", "analytics", "general")


@dataclass
class TemplateVariable:
    """A caller-supplied value a template needs."""

    key: str
    name: str
    type: str = "string"
    description: str = ""
    required: bool = False
    default_value: Any = None
    options: list[dict[str, Any]] = field(default_factory=list)

    def option_values(self) -> list[Any]:
        return [option.get("value") for option in self.options]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "key": self.key,
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "required": self.required,
        }
        if self.default_value is not None:
            data["default_value"] = self.default_value
        if self.options:
            data["options"] = self.options
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemplateVariable:
        return cls(
            key=data["key"],
            name=data.get("name", data["key"]),
            type=data.get("type", "string"),
            description=data.get("description", ""),
            required=data.get("required", False),
            default_value=data.get("default_value"),
            options=list(data.get("options", [])),
        )


@dataclass
class WorkflowTemplate:
    """Reusable workflow definition with variables."""

    id: str
    name: str
    description: str
    category: str
    template: dict[str, Any]
    variables: list[TemplateVariable] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "template": copy.deepcopy(self.template),
            "variables": [variable.to_dict() for variable in self.variables],
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowTemplate:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description", ""),
            category=data.get("category", "general"),
            template=copy.deepcopy(data["template"]),
            variables=[TemplateVariable.from_dict(item) for item in data.get("variables", [])],
            tags=list(data.get("tags", [])),
        )


class WorkflowTemplateRegistry:
    """Registry for workflow templates."""

    def __init__(self) -> None:
        self._templates: dict[str, WorkflowTemplate] = {}
        self._lock = threading.Lock()

    def register(self, template: WorkflowTemplate) -> None:
        with self._lock:
            self._templates[template.id] = template
        logger.debug("Registered workflow template: %s", template.id)

    def unregister(self, template_id: str) -> bool:
        with self._lock:
            return self._templates.pop(template_id, None) is not None

    def get(self, template_id: str) -> WorkflowTemplate | None:
        with self._lock:
            return self._templates.get(template_id)

    def list_templates(
        self, category: str | None = None, tags: list[str] | None = None
    ) -> list[WorkflowTemplate]:
        """List templates in registration order, optionally filtered."""
        with self._lock:
            templates = list(self._templates.values())
        if category:
            templates = [t for t in templates if t.category == category]
        if tags:
            templates = [t for t in templates if any(tag in t.tags for tag in tags)]
        return templates

    def import_templates(self, templates_data: list[dict[str, Any]]) -> int:
        """Import templates from a list of dictionaries.

        Returns:
            Number of templates imported
        """
        count = 0
        for data in templates_data:
            try:
                self.register(WorkflowTemplate.from_dict(data))
                count += 1
            except KeyError as e:
                logger.error("Skipping template without %s: %s", e, data.get("id"))
        return count


BUILTIN_TEMPLATES: list[dict[str, Any]] = [
    {
        "id": "low_inventory_alert",
        "name": "Low Inventory Alert",
        "description": "Automatically notify when product inventory falls below a threshold",
        "category": "inventory",
        "template": {
            "name": "Low Inventory Alert - {{product_name}}",
            "description": "Automatically created workflow to monitor inventory levels",
            "trigger": {
                "name": "Low Stock Trigger",
                "type": "threshold",
                "config": {"metric": "low_inventory", "operator": "gt", "value": 0},
            },
            "actions": [
                {
                    "name": "Send Low Stock Email",
                    "type": "email",
                    "config": {
                        "recipient": "{{admin_email}}",
                        "subject": "Low Stock Alert: {{product_name}}",
                        "body": "Product {{product_name}} is running low on inventory. "
                        "Current stock: {{current_stock}}",
                    },
                    "order": 1,
                }
            ],
            "enabled": True,
            "tags": ["inventory", "alert"],
        },
        "variables": [
            {
                "key": "threshold",
                "name": "Stock Threshold",
                "description": "Alert when inventory falls below this number",
                "type": "number",
                "required": True,
                "default_value": 10,
            },
            {
                "key": "admin_email",
                "name": "Admin Email",
                "description": "Email address to receive alerts",
                "type": "string",
                "required": True,
            },
        ],
        "tags": ["inventory", "monitoring", "alerts"],
    },
    {
        "id": "abandoned_cart_recovery",
        "name": "Abandoned Cart Recovery",
        "description": "Automatically send recovery emails for abandoned carts",
        "category": "marketing",
        "template": {
            "name": "Abandoned Cart Recovery",
            "description": "Recover abandoned carts with automated email sequence",
            "trigger": {
                "name": "Cart Abandonment Trigger",
                "type": "data_change",
                "config": {
                    "table": "carts",
                    "operation": "update",
                    "conditions": {"status": "abandoned"},
                },
            },
            "actions": [
                {
                    "name": "Send Recovery Email",
                    "type": "email",
                    "config": {
                        "recipient": "{{customer_email}}",
                        "subject": "Complete your purchase - Items waiting in your cart",
                        "body": "Hi {{customer_name}}, you left some great items in your cart. "
                        "Complete your purchase now!",
                    },
                    "order": 1,
                }
            ],
            "enabled": True,
            "tags": ["marketing", "recovery"],
        },
        "variables": [
            {
                "key": "delay_hours",
                "name": "Email Delay (hours)",
                "description": "How long to wait before sending recovery email",
                "type": "number",
                "required": True,
                "default_value": 24,
            },
            {
                "key": "discount_code",
                "name": "Discount Code",
                "description": "Optional discount code to include",
                "type": "string",
                "required": False,
            },
        ],
        "tags": ["marketing", "email", "conversion"],
    },
    {
        "id": "new_customer_welcome",
        "name": "New Customer Welcome",
        "description": "Welcome new customers with an automated email sequence",
        "category": "customer",
        "template": {
            "name": "New Customer Welcome",
            "description": "Automated welcome sequence for new customers",
            "trigger": {
                "name": "New Customer Trigger",
                "type": "data_change",
                "config": {"table": "customers", "operation": "insert"},
            },
            "actions": [
                {
                    "name": "Send Welcome Email",
                    "type": "email",
                    "config": {
                        "recipient": "{{customer_email}}",
                        "subject": "Welcome to {{store_name}}!",
                        "body": "Thank you for joining us! Here's a special {{discount_percent}}% "
                        "discount for your first order.",
                    },
                    "order": 1,
                },
                {
                    "name": "Add to New Customer Segment",
                    "type": "customer",
                    "config": {"segment": "new_customers", "tags": ["welcome_sent"]},
                    "order": 2,
                },
            ],
            "enabled": True,
            "tags": ["customer", "welcome"],
        },
        "variables": [
            {
                "key": "discount_percent",
                "name": "Welcome Discount (%)",
                "description": "Discount percentage for new customers",
                "type": "number",
                "required": True,
                "default_value": 10,
            },
            {
                "key": "store_name",
                "name": "Store Name",
                "description": "Your store name for personalization",
                "type": "string",
                "required": True,
            },
        ],
        "tags": ["customer", "welcome", "email"],
    },
    {
        "id": "product_review_request",
        "name": "Product Review Request",
        "description": "Request product reviews from customers after purchase",
        "category": "customer",
        "template": {
            "name": "Product Review Request",
            "description": "Automated review requests after order fulfillment",
            "trigger": {
                "name": "Order Fulfilled Trigger",
                "type": "data_change",
                "config": {
                    "table": "orders",
                    "operation": "update",
                    "conditions": {"fulfillment_status": "fulfilled"},
                },
            },
            "actions": [
                {
                    "name": "Send Review Request",
                    "type": "email",
                    "config": {
                        "recipient": "{{customer_email}}",
                        "subject": "How was your recent purchase?",
                        "body": "We hope you love your recent purchase! "
                        "Please take a moment to leave a review.",
                    },
                    "order": 1,
                }
            ],
            "enabled": True,
            "tags": ["reviews", "customer"],
        },
        "variables": [
            {
                "key": "delay_days",
                "name": "Email Delay (days)",
                "description": "Days to wait after fulfillment before sending review request",
                "type": "number",
                "required": True,
                "default_value": 7,
            },
            {
                "key": "review_incentive",
                "name": "Review Incentive",
                "description": "Optional incentive for leaving a review",
                "type": "string",
                "required": False,
            },
        ],
        "tags": ["reviews", "customer", "email"],
    },
    {
        "id": "price_optimization",
        "name": "Dynamic Price Optimization",
        "description": "Automatically adjust prices based on inventory and demand",
        "category": "inventory",
        "template": {
            "name": "Price Optimization",
            "description": "Dynamic pricing based on inventory levels",
            "trigger": {
                "name": "Daily Price Check",
                "type": "time_based",
                "config": {"schedule": "0 9 * * *", "timezone": "UTC"},
            },
            "actions": [
                {
                    "name": "Adjust Prices",
                    "type": "inventory",
                    "config": {
                        "operation": "price_update",
                        "parameters": {
                            "adjustment_type": "percentage",
                            "price_adjustment": "{{price_adjustment_percent}}",
                        },
                    },
                    "order": 1,
                }
            ],
            "enabled": True,
            "tags": ["pricing", "optimization"],
        },
        "variables": [
            {
                "key": "price_adjustment_percent",
                "name": "Price Adjustment (%)",
                "description": "Percentage to adjust prices (negative to decrease)",
                "type": "number",
                "required": True,
                "default_value": 5,
            },
            {
                "key": "inventory_threshold",
                "name": "Low Inventory Threshold",
                "description": "Increase prices when inventory falls below this level",
                "type": "number",
                "required": True,
                "default_value": 20,
            },
        ],
        "tags": ["pricing", "automation", "inventory"],
    },
    {
        "id": "bulk_inventory_update",
        "name": "Bulk Inventory Update",
        "description": "Update inventory levels in bulk based on external data",
        "category": "inventory",
        "template": {
            "name": "Bulk Inventory Update",
            "description": "Automated bulk inventory updates",
            "trigger": {
                "name": "Inventory File Upload",
                "type": "external_event",
                "config": {
                    "event_type": "file_upload",
                    "webhook_url": "/webhooks/file_upload",
                },
            },
            "actions": [
                {
                    "name": "Process Inventory File",
                    "type": "custom",
                    "config": {
                        "function_name": "process_inventory_file",
                        "parameters": {"format": "{{file_format}}"},
                    },
                    "order": 1,
                },
                {
                    "name": "Send Update Summary",
                    "type": "email",
                    "config": {
                        "recipient": "{{admin_email}}",
                        "subject": "Inventory Update Complete",
                        "body": "Bulk inventory update completed. "
                        "{{updated_count}} products updated.",
                    },
                    "order": 2,
                },
            ],
            "enabled": True,
            "tags": ["inventory", "bulk"],
        },
        "variables": [
            {
                "key": "admin_email",
                "name": "Admin Email",
                "description": "Email for update notifications",
                "type": "string",
                "required": True,
            },
            {
                "key": "file_format",
                "name": "File Format",
                "description": "Expected file format",
                "type": "select",
                "required": True,
                "default_value": "csv",
                "options": [
                    {"label": "CSV", "value": "csv"},
                    {"label": "JSON", "value": "json"},
                ],
            },
        ],
        "tags": ["inventory", "bulk", "import"],
    },
    {
        "id": "daily_sales_report",
        "name": "Daily Sales Report",
        "description": "Generate and send daily sales reports",
        "category": "analytics",
        "template": {
            "name": "Daily Sales Report",
            "description": "Automated daily sales reporting",
            "trigger": {
                "name": "Daily Report Trigger",
                "type": "time_based",
                "config": {"schedule": "0 8 * * *", "timezone": "UTC"},
            },
            "actions": [
                {
                    "name": "Generate Sales Report",
                    "type": "data_export",
                    "config": {"format": "{{report_format}}", "destination": "email"},
                    "order": 1,
                },
                {
                    "name": "Send Report Email",
                    "type": "email",
                    "config": {
                        "recipient": "{{report_recipients}}",
                        "subject": "Daily Sales Report - {{scheduled_time}}",
                        "body": "Please find attached your daily sales report for "
                        "{{scheduled_time}}.",
                    },
                    "order": 2,
                },
            ],
            "enabled": True,
            "tags": ["analytics", "reporting"],
        },
        "variables": [
            {
                "key": "report_recipients",
                "name": "Report Recipients",
                "description": "Email addresses to receive reports (comma-separated)",
                "type": "string",
                "required": True,
            },
            {
                "key": "report_format",
                "name": "Report Format",
                "description": "Format for the sales report",
                "type": "select",
                "required": True,
                "default_value": "csv",
                "options": [
                    {"label": "CSV", "value": "csv"},
                    {"label": "JSON", "value": "json"},
                ],
            },
        ],
        "tags": ["analytics", "reporting", "sales"],
    },
    {
        "id": "customer_lifecycle_automation",
        "name": "Customer Lifecycle Automation",
        "description": "Automated customer journey based on purchase behavior",
        "category": "customer",
        "template": {
            "name": "Customer Lifecycle Automation",
            "description": "Automated customer journey workflows",
            "trigger": {
                "name": "Customer Behavior Trigger",
                "type": "data_change",
                "config": {
                    "table": "customers",
                    "operation": "update",
                    "filters": [
                        {
                            "field": "new_record.lifecycle_stage",
                            "operator": "in",
                            "value": "{{lifecycle_stages}}",
                        }
                    ],
                },
            },
            "actions": [
                {
                    "name": "Update Customer Segment",
                    "type": "customer",
                    "config": {
                        "segment": "lifecycle_{{new_record.lifecycle_stage}}",
                        "tags": ["lifecycle_managed"],
                    },
                    "order": 1,
                },
                {
                    "name": "Send Lifecycle Email",
                    "type": "email",
                    "config": {
                        "recipient": "{{new_record.email}}",
                        "subject": "Special offer just for you!",
                        "body": "Based on your purchase history, we have a special offer for you.",
                    },
                    "order": 2,
                },
            ],
            "enabled": True,
            "tags": ["customer", "lifecycle"],
        },
        "variables": [
            {
                "key": "lifecycle_stages",
                "name": "Lifecycle Stages",
                "description": "Define customer lifecycle stages",
                "type": "multi_select",
                "required": True,
                "options": [
                    {"label": "New Customer", "value": "new"},
                    {"label": "Regular Customer", "value": "regular"},
                    {"label": "VIP Customer", "value": "vip"},
                    {"label": "At Risk", "value": "at_risk"},
                    {"label": "Churned", "value": "churned"},
                ],
            }
        ],
        "tags": ["customer", "lifecycle", "automation"],
    },
    {
        "id": "seasonal_campaign_trigger",
        "name": "Seasonal Campaign Trigger",
        "description": "Launch campaigns based on seasonal events",
        "category": "marketing",
        "template": {
            "name": "Seasonal Campaign - {{season}}",
            "description": "Automated seasonal marketing campaigns",
            "trigger": {
                "name": "Seasonal Date Trigger",
                "type": "time_based",
                "config": {"schedule": "0 9 {{campaign_date}} * *", "timezone": "UTC"},
            },
            "actions": [
                {
                    "name": "Launch Campaign",
                    "type": "email",
                    "config": {
                        "recipient": "{{customer_segments}}",
                        "subject": "{{season}} Sale - Special Offers Inside!",
                        "body": "Don't miss our {{season}} sale with up to "
                        "{{discount_percent}}% off!",
                    },
                    "order": 1,
                },
                {
                    "name": "Update Product Prices",
                    "type": "inventory",
                    "config": {
                        "operation": "price_update",
                        "parameters": {"adjustment_type": "percentage", "price_adjustment": -10},
                    },
                    "order": 2,
                },
            ],
            "enabled": True,
            "tags": ["marketing", "seasonal"],
        },
        "variables": [
            {
                "key": "season",
                "name": "Season",
                "description": "Season for the campaign",
                "type": "select",
                "required": True,
                "options": [
                    {"label": "Spring", "value": "spring"},
                    {"label": "Summer", "value": "summer"},
                    {"label": "Fall", "value": "fall"},
                    {"label": "Winter", "value": "winter"},
                    {"label": "Holiday", "value": "holiday"},
                ],
            },
            {
                "key": "campaign_date",
                "name": "Campaign Day",
                "description": "Day of the month the campaign launches",
                "type": "number",
                "required": True,
                "default_value": 1,
            },
            {
                "key": "discount_percent",
                "name": "Discount Percentage",
                "description": "Discount percentage for the campaign",
                "type": "number",
                "required": True,
                "default_value": 20,
            },
            {
                "key": "customer_segments",
                "name": "Campaign Recipients",
                "description": "Recipient list or segment address for the campaign email",
                "type": "string",
                "required": True,
            },
        ],
        "tags": ["marketing", "seasonal", "campaigns"],
    },
    {
        "id": "stock_reorder_automation",
        "name": "Automated Stock Reordering",
        "description": "Automatically reorder stock when inventory is low",
        "category": "inventory",
        "template": {
            "name": "Stock Reorder Automation",
            "description": "Automated stock reordering system",
            "trigger": {
                "name": "Low Stock Trigger",
                "type": "threshold",
                "config": {"metric": "low_inventory", "operator": "gt", "value": 0},
            },
            "actions": [
                {
                    "name": "Create Reorder Request",
                    "type": "inventory",
                    "config": {
                        "operation": "reorder",
                        "parameters": {"quantity": "{{reorder_quantity}}"},
                    },
                    "order": 1,
                },
                {
                    "name": "Notify Supplier",
                    "type": "integration",
                    "config": {
                        "service": "webhook",
                        "endpoint": "{{supplier_webhook}}",
                        "payload": {
                            "product_id": "{{product_id}}",
                            "quantity": "{{reorder_quantity}}",
                            "urgency": "normal",
                        },
                    },
                    "order": 2,
                },
            ],
            "enabled": True,
            "tags": ["inventory", "automation"],
        },
        "variables": [
            {
                "key": "reorder_threshold",
                "name": "Reorder Threshold",
                "description": "Minimum stock level before reordering",
                "type": "number",
                "required": True,
                "default_value": 10,
            },
            {
                "key": "reorder_quantity",
                "name": "Reorder Quantity",
                "description": "How many units to reorder",
                "type": "number",
                "required": True,
                "default_value": 50,
            },
            {
                "key": "supplier_webhook",
                "name": "Supplier Webhook URL",
                "description": "Webhook URL to notify supplier",
                "type": "string",
                "required": True,
            },
        ],
        "tags": ["inventory", "automation", "suppliers"],
    },
]


def create_default_template_registry() -> WorkflowTemplateRegistry:
    """Create a template registry with built-in templates."""
    registry = WorkflowTemplateRegistry()
    registry.import_templates(BUILTIN_TEMPLATES)
    return registry


__all__ = [
    "BUILTIN_TEMPLATES",
    "TEMPLATE_CATEGORIES",
    "TemplateVariable",
    "VARIABLE_TYPES",
    "WorkflowTemplate",
    "WorkflowTemplateRegistry",
    "create_default_template_registry",
]
