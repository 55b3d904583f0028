"""SQLite-backed store data used by the built-in action collaborators.

Holds the product, customer and log tables that inventory, customer,
email and export actions read and mutate.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..core.logger import get_logger
from .base import SQLiteStore

logger = get_logger("persistence.store_data")

EXPORTABLE_TABLES = (
    "products",
    "email_logs",
    "reorder_requests",
    "customer_segments",
    "customer_tags",
)


class StoreDataRepository(SQLiteStore):
    """Product catalogue, customer segmentation and action logs."""

    def __init__(self, db_path: str | Path | None = None) -> None:
        super().__init__(db_path)

    def _init_db(self) -> None:
        with self._cursor() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS products (
                    id TEXT NOT NULL,
                    store_id TEXT NOT NULL,
                    title TEXT,
                    price REAL DEFAULT 0,
                    quantity INTEGER DEFAULT 0,
                    status TEXT DEFAULT 'active',
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (store_id, id)
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS email_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store_id TEXT NOT NULL,
                    recipient TEXT,
                    subject TEXT,
                    body TEXT,
                    template_id TEXT,
                    status TEXT NOT NULL,
                    attachment_json TEXT,
                    sent_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS reorder_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    store_id TEXT NOT NULL,
                    product_id TEXT NOT NULL,
                    quantity INTEGER NOT NULL,
                    status TEXT DEFAULT 'pending',
                    created_at TEXT DEFAULT CURRENT_TIMESTAMP
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS customer_segments (
                    store_id TEXT NOT NULL,
                    customer_id TEXT NOT NULL,
                    segment_name TEXT NOT NULL,
                    added_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (store_id, customer_id, segment_name)
                )
            """)
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS customer_tags (
                    store_id TEXT NOT NULL,
                    customer_id TEXT NOT NULL,
                    tag TEXT NOT NULL,
                    added_at TEXT DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (store_id, customer_id, tag)
                )
            """)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def upsert_product(
        self,
        store_id: str,
        product_id: str,
        title: str = "",
        price: float = 0.0,
        quantity: int = 0,
        status: str = "active",
    ) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT OR REPLACE INTO products (id, store_id, title, price, quantity, status)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (product_id, store_id, title, price, quantity, status),
            )

    def get_product(self, store_id: str, product_id: str) -> dict[str, Any] | None:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT * FROM products WHERE store_id = ? AND id = ?", (store_id, product_id)
            )
            row = cursor.fetchone()
        return dict(row) if row else None

    def update_product(self, store_id: str, product_id: str, **fields: Any) -> bool:
        """Update price, quantity or status of one product.

        Returns:
            True if the product exists
        """
        allowed = {
            key: value for key, value in fields.items() if key in ("price", "quantity", "status")
        }
        if not allowed:
            return False
        assignments = ", ".join(f"{key} = ?" for key in allowed)
        with self._cursor() as cursor:
            cursor.execute(
                f"""
                UPDATE products SET {assignments}, updated_at = CURRENT_TIMESTAMP
                WHERE store_id = ? AND id = ?
                """,
                [*allowed.values(), store_id, product_id],
            )
            return cursor.rowcount > 0

    def count_low_inventory(self, store_id: str | None = None, below: int = 10) -> int:
        """Count active products with quantity under ``below``."""
        query = "SELECT COUNT(*) FROM products WHERE quantity < ? AND status = 'active'"
        params: list[Any] = [below]
        if store_id is not None:
            query += " AND store_id = ?"
            params.append(store_id)
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return int(cursor.fetchone()[0])

    def create_reorder_request(self, store_id: str, product_id: str, quantity: int) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO reorder_requests (store_id, product_id, quantity)
                VALUES (?, ?, ?)
                """,
                (store_id, product_id, quantity),
            )
            return int(cursor.lastrowid or 0)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def add_to_segment(self, store_id: str, customer_id: str, segment: str) -> None:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT OR IGNORE INTO customer_segments (store_id, customer_id, segment_name)
                VALUES (?, ?, ?)
                """,
                (store_id, customer_id, segment),
            )

    def add_tags(self, store_id: str, customer_id: str, tags: list[str]) -> None:
        with self._cursor() as cursor:
            cursor.executemany(
                """
                INSERT OR IGNORE INTO customer_tags (store_id, customer_id, tag)
                VALUES (?, ?, ?)
                """,
                [(store_id, customer_id, tag) for tag in tags],
            )

    def get_segments(self, store_id: str, customer_id: str) -> list[str]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT segment_name FROM customer_segments
                WHERE store_id = ? AND customer_id = ? ORDER BY segment_name
                """,
                (store_id, customer_id),
            )
            return [row[0] for row in cursor.fetchall()]

    def get_tags(self, store_id: str, customer_id: str) -> list[str]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT tag FROM customer_tags
                WHERE store_id = ? AND customer_id = ? ORDER BY tag
                """,
                (store_id, customer_id),
            )
            return [row[0] for row in cursor.fetchall()]

    # ------------------------------------------------------------------
    # Logs and export
    # ------------------------------------------------------------------

    def log_email(
        self,
        store_id: str,
        recipient: str | None,
        subject: str,
        body: str,
        template_id: str | None = None,
        status: str = "sent",
        attachment: Any = None,
    ) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO email_logs (
                    store_id, recipient, subject, body, template_id, status, attachment_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    store_id,
                    recipient,
                    subject,
                    body,
                    template_id,
                    status,
                    json.dumps(attachment, default=str) if attachment is not None else None,
                ),
            )
            return int(cursor.lastrowid or 0)

    def list_email_logs(self, store_id: str) -> list[dict[str, Any]]:
        return self.select_rows("email_logs", store_id)

    def select_rows(self, table: str, store_id: str) -> list[dict[str, Any]]:
        """Return every row of an exportable table for one store.

        Raises:
            ValueError: If the table is not exportable
        """
        if table not in EXPORTABLE_TABLES:
            raise ValueError(f"Table is not exportable: {table}")
        with self._cursor() as cursor:
            cursor.execute(f"SELECT * FROM {table} WHERE store_id = ?", (store_id,))
            return [dict(row) for row in cursor.fetchall()]


__all__ = ["EXPORTABLE_TABLES", "StoreDataRepository"]
