"""Tax fields and the invoice service period."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 7
NAME = "add_tax_and_service_period"

COLUMNS = {
    "tax_rate": "REAL NOT NULL DEFAULT 0",
    "is_small_business": "INTEGER NOT NULL DEFAULT 0",
    "tax_amount": "REAL NOT NULL DEFAULT 0",
    "service_period_start": "TEXT",
    "service_period_end": "TEXT",
    "service_period_manually_set": "INTEGER NOT NULL DEFAULT 0",
}

BACKFILL_SERVICE_PERIOD = """
UPDATE invoices
SET service_period_start = (
        SELECT MIN(te.date) FROM time_entries te WHERE te.invoice_id = invoices.id
    ),
    service_period_end = (
        SELECT MAX(te.date) FROM time_entries te WHERE te.invoice_id = invoices.id
    )
WHERE EXISTS (SELECT 1 FROM time_entries te WHERE te.invoice_id = invoices.id)
"""


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    for column, ddl in COLUMNS.items():
        if not schema.has_column("invoices", column):
            conn.execute(text(f"ALTER TABLE invoices ADD COLUMN {column} {ddl}"))

    conn.execute(text(BACKFILL_SERVICE_PERIOD))
