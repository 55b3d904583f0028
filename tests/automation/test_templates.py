"""Tests for the workflow template registry."""

from store_workflows.automation.templates import (
    BUILTIN_TEMPLATES,
    TEMPLATE_CATEGORIES,
    VARIABLE_TYPES,
    TemplateVariable,
    WorkflowTemplate,
    WorkflowTemplateRegistry,
    create_default_template_registry,
)


class TestBuiltinTemplates:
    """The templates every deployment ships with."""

    def test_all_builtins_are_registered(self):
        registry = create_default_template_registry()

        assert [t.id for t in registry.list_templates()] == [t["id"] for t in BUILTIN_TEMPLATES]

    def test_builtins_are_well_formed(self):
        for template in create_default_template_registry().list_templates():
            assert template.category in TEMPLATE_CATEGORIES
            assert template.template["trigger"]["type"]
            assert template.template["actions"]
            for variable in template.variables:
                assert variable.type in VARIABLE_TYPES

    def test_filter_by_tags(self):
        registry = create_default_template_registry()

        tagged = registry.list_templates(tags=["alerts"])

        assert [t.id for t in tagged] == ["low_inventory_alert"]


class TestRegistry:
    """Registration and import."""

    def test_register_and_unregister(self):
        registry = WorkflowTemplateRegistry()
        template = WorkflowTemplate(
            id="t1", name="T1", description="", category="general", template={}
        )

        registry.register(template)

        assert registry.get("t1") is template
        assert registry.unregister("t1") is True
        assert registry.unregister("t1") is False
        assert registry.get("t1") is None

    def test_import_skips_incomplete_entries(self):
        registry = WorkflowTemplateRegistry()

        count = registry.import_templates(
            [{"id": "ok", "template": {"name": "x"}}, {"id": "broken"}]
        )

        assert count == 1
        assert registry.get("ok").category == "general"
        assert registry.get("broken") is None

    def test_dict_round_trip_keeps_variables(self):
        template = WorkflowTemplate(
            id="t1",
            name="T1",
            description="d",
            category="customer",
            template={"name": "{{who}}"},
            variables=[
                TemplateVariable(key="who", name="Who", required=True, default_value="all")
            ],
            tags=["a"],
        )

        restored = WorkflowTemplate.from_dict(template.to_dict())

        assert restored == template

    def test_to_dict_copies_template_body(self):
        template = WorkflowTemplate(
            id="t1", name="T1", description="", category="general", template={"name": "x"}
        )

        template.to_dict()["template"]["name"] = "changed"

        assert template.template["name"] == "x"
