"""Tests for {{token}} substitution."""

import logging

from store_workflows.automation.variables import VariableResolver, find_tokens, substitute


class TestSubstitute:
    """Substitution over strings and nested values."""

    def test_embedded_tokens_render_as_text(self):
        context = {"order": {"id": 42, "paid": True}}

        result = substitute("Order #{{order.id}} paid={{ order.paid }}", context)

        assert result == "Order #42 paid=true"

    def test_whole_token_keeps_value_type(self):
        context = {"quantity": 7, "items": [1, 2]}

        assert substitute("{{quantity}}", context) == 7
        assert substitute("{{items}}", context) == [1, 2]

    def test_nested_structures(self):
        context = {"customer": {"email": "c@example.com"}}
        value = {"to": ["{{customer.email}}"], "meta": {"note": "for {{customer.email}}"}, "n": 3}

        assert substitute(value, context) == {
            "to": ["c@example.com"],
            "meta": {"note": "for c@example.com"},
            "n": 3,
        }

    def test_unresolved_tokens_stay_verbatim_and_are_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="store_workflows"):
            result = substitute("Hi {{customer.name}}, {{missing}}", {"customer": {}})

        assert result == "Hi {{customer.name}}, {{missing}}"
        assert "customer.name" in caplog.text
        assert "missing" in caplog.text

    def test_falls_back_to_trigger_data(self):
        context = {"trigger_data": {"customer_email": "t@example.com"}}

        assert substitute("{{customer_email}}", context) == "t@example.com"

    def test_root_wins_over_fallback(self):
        context = {"name": "root", "trigger_data": {"name": "trigger"}}

        assert substitute("{{name}}", context) == "root"

    def test_none_and_dicts_render(self):
        context = {"nothing": None, "data": {"a": 1}}

        assert substitute("[{{nothing}}] {{data}}", context) == '[null] {"a": 1}'


class TestVariableResolver:
    """Resolver bookkeeping."""

    def test_records_unresolved_paths(self):
        resolver = VariableResolver({"a": 1}, log_unresolved=False)

        resolver.substitute({"x": "{{a}} {{b}}", "y": "{{c.d}}"})

        assert resolver.unresolved == ["b", "c.d"]


def test_find_tokens():
    value = {"subject": "{{order.id}}", "lines": ["{{ customer.name }}", "plain"], "n": 1}

    assert find_tokens(value) == ["order.id", "customer.name"]
