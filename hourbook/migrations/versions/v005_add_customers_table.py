"""Customers table, backfilled from the legacy free-text client names.

One customer row is created per distinct non-empty ``projects.client_name``
and every project with that client name is linked to it. ``client_name`` is
kept for older readers.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 5
NAME = "add_customers_table"

CREATE_CUSTOMERS = """
CREATE TABLE customers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT,
    phone TEXT,
    address TEXT,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""


def _backfill_customers(conn: Connection) -> None:
    client_names = conn.execute(
        text(
            "SELECT DISTINCT client_name FROM projects "
            "WHERE client_name IS NOT NULL AND client_name != '' "
            "ORDER BY client_name"
        )
    ).scalars().all()

    for client_name in client_names:
        customer_id = conn.execute(
            text(
                "INSERT INTO customers (name, created_at, updated_at) "
                "VALUES (:name, datetime('now'), datetime('now')) RETURNING id"
            ),
            {"name": client_name},
        ).scalar_one()
        conn.execute(
            text("UPDATE projects SET customer_id = :customer_id WHERE client_name = :name"),
            {"customer_id": customer_id, "name": client_name},
        )


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    created = False
    if not schema.has_table("customers"):
        conn.execute(text(CREATE_CUSTOMERS))
        created = True

    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_customers_name ON customers(name)"))

    if not schema.has_column("projects", "customer_id"):
        conn.execute(
            text("ALTER TABLE projects ADD COLUMN customer_id INTEGER REFERENCES customers(id)")
        )

    # Backfill once; a pre-existing customers table already holds user data
    if created:
        _backfill_customers(conn)
