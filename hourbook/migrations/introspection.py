"""Live schema inspection used by migration bodies and legacy bootstrap."""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import text
from sqlalchemy.engine import Connection


class SchemaIntrospector(Protocol):
    """What a migration may ask about the schema before changing it."""

    def has_table(self, name: str) -> bool: ...

    def has_column(self, table: str, name: str) -> bool: ...


class SQLiteIntrospector:
    """SchemaIntrospector backed by ``sqlite_master`` and ``PRAGMA table_info``.

    Always queries the live connection, so a migration sees its own earlier
    DDL from the same transaction.
    """

    def __init__(self, conn: Connection):
        self.conn = conn

    def has_table(self, name: str) -> bool:
        row = self.conn.execute(
            text("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = :name"),
            {"name": name},
        ).first()
        return row is not None

    def columns(self, table: str) -> list[str]:
        # PRAGMA arguments cannot be bound; names come from migration code only
        rows = self.conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
        return [row[1] for row in rows]

    def has_column(self, table: str, name: str) -> bool:
        return name in self.columns(table)
