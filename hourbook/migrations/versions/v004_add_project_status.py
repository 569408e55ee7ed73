"""Project lifecycle status."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 4
NAME = "add_project_status"


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    if not schema.has_column("projects", "status"):
        conn.execute(
            text("ALTER TABLE projects ADD COLUMN status TEXT NOT NULL DEFAULT 'active'")
        )

    conn.execute(text("CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status)"))
