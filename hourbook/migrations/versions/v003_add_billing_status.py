"""Denormalized billing status on time entries."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 3
NAME = "add_billing_status"


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    if not schema.has_column("time_entries", "billing_status"):
        conn.execute(
            text(
                "ALTER TABLE time_entries "
                "ADD COLUMN billing_status TEXT NOT NULL DEFAULT 'unbilled'"
            )
        )

    conn.execute(
        text(
            "CREATE INDEX IF NOT EXISTS idx_time_entries_billing_status "
            "ON time_entries(billing_status)"
        )
    )
