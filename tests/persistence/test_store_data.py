"""Tests for StoreDataRepository."""

import json

import pytest


class TestProducts:
    """Product rows."""

    def test_upsert_and_update(self, store_data):
        store_data.upsert_product("s1", "p1", title="Mug", price=5.0, quantity=3)

        assert store_data.update_product("s1", "p1", price=6.5, ignored="x") is True

        product = store_data.get_product("s1", "p1")
        assert product["price"] == 6.5
        assert product["title"] == "Mug"

    def test_update_unknown_product_or_fields(self, store_data):
        store_data.upsert_product("s1", "p1")

        assert store_data.update_product("s1", "ghost", price=1) is False
        assert store_data.update_product("s1", "p1", title="nope") is False

    def test_products_are_scoped_by_store(self, store_data):
        store_data.upsert_product("s1", "p1", title="One")
        store_data.upsert_product("s2", "p1", title="Two")

        assert store_data.get_product("s2", "p1")["title"] == "Two"
        assert len(store_data.select_rows("products", "s1")) == 1

    def test_count_low_inventory(self, store_data):
        store_data.upsert_product("s1", "p1", quantity=2)
        store_data.upsert_product("s1", "p2", quantity=20)
        store_data.upsert_product("s2", "p3", quantity=0)

        assert store_data.count_low_inventory("s1") == 1
        assert store_data.count_low_inventory() == 2
        assert store_data.count_low_inventory("s1", below=30) == 2


class TestCustomersAndLogs:
    """Segments, tags and action logs."""

    def test_segments_and_tags_are_deduplicated(self, store_data):
        store_data.add_to_segment("s1", "c1", "vip")
        store_data.add_to_segment("s1", "c1", "vip")
        store_data.add_tags("s1", "c1", ["b", "a", "b"])

        assert store_data.get_segments("s1", "c1") == ["vip"]
        assert store_data.get_tags("s1", "c1") == ["a", "b"]

    def test_email_log_with_attachment(self, store_data):
        log_id = store_data.log_email(
            "s1", None, "Export", "see attached", attachment={"filename": "x.csv"}
        )

        log = store_data.list_email_logs("s1")[0]
        assert log["id"] == log_id
        assert log["status"] == "sent"
        assert json.loads(log["attachment_json"]) == {"filename": "x.csv"}

    def test_reorder_requests(self, store_data):
        request_id = store_data.create_reorder_request("s1", "p1", 40)

        row = store_data.select_rows("reorder_requests", "s1")[0]
        assert row["id"] == request_id
        assert row["status"] == "pending"

    def test_select_rows_rejects_unknown_tables(self, store_data):
        with pytest.raises(ValueError, match="not exportable"):
            store_data.select_rows("sqlite_master", "s1")
