"""External invoices issued by another system but tracked here."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 6
NAME = "add_external_invoices"

COLUMNS = {
    "type": "TEXT NOT NULL DEFAULT 'internal'",
    "external_invoice_number": "TEXT",
    "net_amount": "REAL",
    "gross_amount": "REAL",
}


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    for column, ddl in COLUMNS.items():
        if not schema.has_column("invoices", column):
            conn.execute(text(f"ALTER TABLE invoices ADD COLUMN {column} {ddl}"))
