"""Independent auto flags for each service period boundary.

Replaces the single ``service_period_manually_set`` flag: a manually set
period becomes two manual boundaries, everything else stays derived.
"""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 8
NAME = "refactor_service_period_auto"

BACKFILL_AUTO_FLAGS = """
UPDATE invoices
SET service_period_start_auto = CASE WHEN service_period_manually_set = 1 THEN 0 ELSE 1 END,
    service_period_end_auto = CASE WHEN service_period_manually_set = 1 THEN 0 ELSE 1 END
"""


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    for column in ("service_period_start_auto", "service_period_end_auto"):
        if not schema.has_column("invoices", column):
            conn.execute(
                text(f"ALTER TABLE invoices ADD COLUMN {column} INTEGER NOT NULL DEFAULT 1")
            )

    if schema.has_column("invoices", "service_period_manually_set"):
        conn.execute(text(BACKFILL_AUTO_FLAGS))
