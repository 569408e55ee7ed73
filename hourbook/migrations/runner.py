"""Migration runner: brings a store's schema to the latest known version.

Each pending migration runs in its own transaction together with its ledger
row, so a failure leaves the store at the last successfully applied version.
Stores created before the ledger existed are bootstrapped by probing for
structural markers and recording the migrations they already contain.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import text
from sqlalchemy.engine import Connection

from hourbook.db.connection import Store
from hourbook.errors import MigrationError
from hourbook.migrations.introspection import SQLiteIntrospector
from hourbook.migrations.registry import MIGRATIONS, Migration, validate_migrations
from hourbook.models import AppliedMigration, MigrationResult

logger = structlog.get_logger(__name__)

CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    applied_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

INSERT_LEDGER_ROW = text(
    "INSERT INTO schema_migrations (version, name, applied_at) "
    "VALUES (:version, :name, datetime('now'))"
)

# (table, column or None, implied version), checked in this order
LEGACY_MARKERS: tuple[tuple[str, str | None, int], ...] = (
    ("projects", None, 1),
    ("invoices", None, 2),
    ("time_entries", "billing_status", 3),
    ("projects", "status", 4),
)


def detect_schema_version(conn: Connection) -> int:
    """Infer the version of an unversioned store from its tables and columns.

    The result only ever grows as markers are found; an empty store is 0.
    """
    schema = SQLiteIntrospector(conn)
    detected = 0
    for table, column, version in LEGACY_MARKERS:
        if column is None:
            present = schema.has_table(table)
        else:
            present = schema.has_column(table, column)
        if present:
            detected = max(detected, version)
    return detected


class MigrationRunner:
    """Applies the known migration set to one store."""

    def __init__(self, store: Store, migrations: Sequence[Migration] = MIGRATIONS):
        validate_migrations(migrations)
        self.store = store
        self.migrations = tuple(migrations)

    @property
    def latest_version(self) -> int:
        return self.migrations[-1].version if self.migrations else 0

    # Sync bodies, run on the connection via run_sync ---------------------

    def _ledger_versions(self, conn: Connection) -> list[int]:
        conn.execute(text(CREATE_LEDGER))
        return list(
            conn.execute(text("SELECT version FROM schema_migrations")).scalars().all()
        )

    def _current_version(self, conn: Connection) -> int:
        versions = self._ledger_versions(conn)
        known = {m.version for m in self.migrations}
        unknown = sorted(set(versions) - known)
        if unknown:
            raise MigrationError(
                f"Store is at schema version {unknown[-1]}, newer than the latest "
                f"known version {self.latest_version}",
                version=unknown[-1],
            )
        return max(versions, default=0)

    def _bootstrap(self, conn: Connection) -> int:
        schema = SQLiteIntrospector(conn)
        if schema.has_table("schema_migrations"):
            has_rows = conn.execute(
                text("SELECT 1 FROM schema_migrations LIMIT 1")
            ).first()
            if has_rows is not None:
                return 0

        detected = detect_schema_version(conn)
        if detected == 0:
            return 0

        conn.execute(text(CREATE_LEDGER))
        for migration in self.migrations:
            if migration.version <= detected:
                conn.execute(
                    INSERT_LEDGER_ROW,
                    {"version": migration.version, "name": migration.name},
                )
        return detected

    @staticmethod
    def _apply(conn: Connection, migration: Migration) -> None:
        migration.upgrade(conn, SQLiteIntrospector(conn))
        conn.execute(INSERT_LEDGER_ROW, {"version": migration.version, "name": migration.name})

    # Public API ----------------------------------------------------------

    async def current_version(self) -> int:
        """Highest applied version, 0 for an empty ledger.

        Creates the ledger table when missing.

        Raises:
            MigrationError: If the ledger records a version this build does not know
        """
        async with self.store.begin() as conn:
            return await conn.run_sync(self._current_version)

    async def detect_legacy_version(self) -> int:
        async with self.store.session() as session:
            conn = await session.connection()
            return await conn.run_sync(detect_schema_version)

    async def bootstrap_legacy(self) -> int:
        """Record migrations an unversioned store already contains.

        Only acts when the ledger is absent or empty. Migration bodies are not
        executed.

        Returns:
            The detected version, or 0 when nothing was recorded
        """
        async with self.store.begin() as conn:
            detected = await conn.run_sync(self._bootstrap)

        if detected:
            logger.info("legacy_schema_bootstrapped", detected_version=detected)
        return detected

    async def run_pending(self) -> MigrationResult:
        """Bootstrap, then apply every pending migration in ascending order.

        Raises:
            MigrationError: Naming the first migration that failed; later
                migrations are not attempted
        """
        await self.bootstrap_legacy()
        current = await self.current_version()
        pending = [m for m in self.migrations if m.version > current]

        applied = 0
        for migration in pending:
            logger.info("migration_applying", version=migration.version, name=migration.name)
            try:
                async with self.store.begin() as conn:
                    await conn.run_sync(self._apply, migration)
            except Exception as exc:
                logger.error(
                    "migration_failed",
                    version=migration.version,
                    name=migration.name,
                    error=str(exc),
                )
                raise MigrationError(
                    f"Migration {migration.version} ({migration.name}) failed: {exc}",
                    version=migration.version,
                    name=migration.name,
                ) from exc

            applied += 1
            current = migration.version
            logger.info("migration_applied", version=migration.version, name=migration.name)

        if applied:
            logger.info("migrations_complete", applied_count=applied, current_version=current)
        return MigrationResult(applied_count=applied, current_version=current)

    async def needs_migration(self) -> bool:
        return await self.current_version() < self.latest_version

    async def applied_migrations(self) -> list[AppliedMigration]:
        async with self.store.begin() as conn:
            await conn.run_sync(self._ledger_versions)
            result = await conn.execute(
                text("SELECT version, name, applied_at FROM schema_migrations ORDER BY version")
            )
            return [AppliedMigration(**row._mapping) for row in result]
