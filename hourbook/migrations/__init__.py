"""Versioned schema migrations and the runner that applies them."""

from hourbook.migrations.introspection import SchemaIntrospector, SQLiteIntrospector
from hourbook.migrations.registry import MIGRATIONS, Migration, validate_migrations
from hourbook.migrations.runner import MigrationRunner, detect_schema_version

__all__ = [
    "MIGRATIONS",
    "Migration",
    "MigrationRunner",
    "SQLiteIntrospector",
    "SchemaIntrospector",
    "detect_schema_version",
    "validate_migrations",
]
