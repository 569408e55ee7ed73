"""Application bootstrap: one store, migrated, with every service wired to it.

Startup order:
1. Construct the store handle
2. Run pending migrations (a MigrationError aborts startup)
3. Build the billing engine, tracking services and command dispatcher
4. Optionally start the periodic backup task
"""

from __future__ import annotations

import structlog

from hourbook.backup import BackupManager, BackupScheduler
from hourbook.billing.engine import BillingEngine
from hourbook.commands import CommandDispatcher
from hourbook.config import AppConfig, get_config
from hourbook.core.logging import configure_logging
from hourbook.db.connection import Store
from hourbook.errors import MigrationError
from hourbook.migrations.runner import MigrationRunner
from hourbook.models import MigrationResult
from hourbook.tracking.customers import CustomerService
from hourbook.tracking.projects import ProjectService
from hourbook.tracking.reports import ReportService
from hourbook.tracking.settings import SettingsRepository
from hourbook.tracking.time_entries import TimeEntryService

logger = structlog.get_logger(__name__)


class Application:
    """Owns the store and everything built on top of it."""

    def __init__(self, config: AppConfig, store: Store, migration_result: MigrationResult):
        self.config = config
        self.store = store
        self.migration_result = migration_result

        self.runner = MigrationRunner(store)
        self.settings = SettingsRepository(store)
        self.billing = BillingEngine(store, config.invoice)
        self.projects = ProjectService(store, self.billing)
        self.customers = CustomerService(store)
        self.time_entries = TimeEntryService(store, self.billing)
        self.reports = ReportService(store)
        self.dispatcher = CommandDispatcher(
            self.billing,
            self.runner,
            self.projects,
            self.customers,
            self.time_entries,
            self.reports,
        )

        # In-memory stores have no file to copy
        self.backups: BackupManager | None = None
        self.scheduler: BackupScheduler | None = None
        if store.path is not None:
            self.backups = BackupManager(store)
            self.scheduler = BackupScheduler(
                self.backups,
                self.settings,
                interval_seconds=config.backup.interval_seconds,
                default_directory=config.backup.directory,
                skip_unchanged=config.backup.skip_unchanged,
            )

    @classmethod
    async def open(
        cls, config: AppConfig | None = None, configure_logs: bool = True
    ) -> Application:
        """Open the store and bring its schema up to date.

        Raises:
            MigrationError: A migration failed; the store is disposed first
        """
        config = config or get_config()
        if configure_logs:
            configure_logging(
                config.log_level,
                json_logs=config.log_format == "json",
                log_file=config.log_file,
            )

        store = Store(config.db)
        runner = MigrationRunner(store)
        try:
            result = await runner.run_pending()
        except MigrationError as exc:
            logger.error("startup_aborted", version=exc.version, name=exc.name, error=exc.message)
            await store.dispose()
            raise

        logger.info(
            "application_ready",
            db_url=config.db.url,
            schema_version=result.current_version,
            applied_migrations=result.applied_count,
        )
        return cls(config, store, result)

    def start_background(self) -> None:
        if self.scheduler is not None:
            self.scheduler.start()

    async def close(self) -> None:
        """Stop background work, take the shutdown backup, release the store."""
        try:
            if self.scheduler is not None:
                await self.scheduler.stop()
                if self.config.backup.on_shutdown:
                    try:
                        await self.scheduler.run_once()
                    except Exception:
                        logger.exception("shutdown_backup_failed")
        finally:
            await self.store.dispose()
            logger.info("application_closed")

    async def __aenter__(self) -> Application:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
