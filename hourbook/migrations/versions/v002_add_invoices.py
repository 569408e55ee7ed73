"""Invoices table and the time entry -> invoice link."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 2
NAME = "add_invoices"

CREATE_INVOICES = """
CREATE TABLE IF NOT EXISTS invoices (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    invoice_number TEXT NOT NULL UNIQUE,
    invoice_date TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'draft',
    total_amount REAL NOT NULL DEFAULT 0,
    notes TEXT,
    cancellation_reason TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_time_entries_invoice_id ON time_entries(invoice_id)",
    "CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices(status)",
    "CREATE INDEX IF NOT EXISTS idx_invoices_date ON invoices(invoice_date)",
]


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    conn.execute(text(CREATE_INVOICES))

    if not schema.has_column("time_entries", "invoice_id"):
        conn.execute(
            text(
                "ALTER TABLE time_entries "
                "ADD COLUMN invoice_id INTEGER REFERENCES invoices(id)"
            )
        )

    for stmt in INDEXES:
        conn.execute(text(stmt))
