"""Initial schema: projects, time entries, settings and meta counters."""

from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.migrations.introspection import SchemaIntrospector

VERSION = 1
NAME = "initial_schema"

CREATE_PROJECTS = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    hourly_rate REAL,
    client_name TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

CREATE_TIME_ENTRIES = """
CREATE TABLE IF NOT EXISTS time_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL,
    date TEXT NOT NULL,
    start_time TEXT,
    end_time TEXT,
    duration_minutes INTEGER NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (project_id) REFERENCES projects (id) ON DELETE CASCADE
)
"""

CREATE_SETTINGS = """
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

CREATE_META = """
CREATE TABLE IF NOT EXISTS meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""

SEED_META = [
    "INSERT INTO meta (key, value) VALUES ('data_version', '1') ON CONFLICT(key) DO NOTHING",
    "INSERT INTO meta (key, value) VALUES ('last_backup_version', '0') ON CONFLICT(key) DO NOTHING",
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_time_entries_project_id ON time_entries(project_id)",
    "CREATE INDEX IF NOT EXISTS idx_time_entries_date ON time_entries(date)",
]


def upgrade(conn: Connection, schema: SchemaIntrospector) -> None:
    for ddl in (CREATE_PROJECTS, CREATE_TIME_ENTRIES, CREATE_SETTINGS, CREATE_META):
        conn.execute(text(ddl))
    for stmt in SEED_META + INDEXES:
        conn.execute(text(stmt))
