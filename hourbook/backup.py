"""Store file backups and the periodic backup task.

A backup is a plain copy of the SQLite file taken while the store is
quiesced: the write lock is held and the WAL has been checkpointed into the
main file, so the copy is consistent.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime as dt
import shutil
from collections.abc import Callable
from pathlib import Path

import structlog

from hourbook.db.connection import Store
from hourbook.errors import BackupError
from hourbook.models import BackupFile
from hourbook.tracking.settings import BACKUP_DIRECTORY, LAST_BACKUP, SettingsRepository

logger = structlog.get_logger(__name__)

BACKUP_PREFIX = "backup-"
BACKUP_SUFFIX = ".sqlite"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


def backup_filename(moment: dt.datetime) -> str:
    return f"{BACKUP_PREFIX}{moment.strftime(TIMESTAMP_FORMAT)}{BACKUP_SUFFIX}"


class BackupManager:
    """Creates, lists and restores copies of the store file."""

    def __init__(
        self,
        store: Store,
        db_path: Path | None = None,
        now: Callable[[], dt.datetime] = dt.datetime.now,
    ):
        self.store = store
        self.db_path = db_path or store.path
        self.now = now
        if self.db_path is None:
            raise BackupError("In-memory stores cannot be backed up")

    async def create_backup(self, directory: Path) -> Path:
        """Copy the store into ``directory`` as ``backup-<timestamp>.sqlite``.

        Raises:
            BackupError: Directory does not exist
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise BackupError(f"Backup directory does not exist: {directory}")

        target = directory / backup_filename(self.now())
        async with self.store.quiesce():
            await asyncio.to_thread(shutil.copy2, self.db_path, target)

        logger.info("backup_created", path=str(target))
        return target

    async def list_backups(self, directory: Path) -> list[BackupFile]:
        """Backups in ``directory``, newest first. Missing directory lists nothing."""
        directory = Path(directory)
        if not directory.is_dir():
            return []

        backups = []
        for path in directory.iterdir():
            if not (path.name.startswith(BACKUP_PREFIX) and path.name.endswith(BACKUP_SUFFIX)):
                continue
            stat = path.stat()
            backups.append(
                BackupFile(
                    filename=path.name,
                    path=str(path),
                    modified=dt.datetime.fromtimestamp(stat.st_mtime),
                    size=stat.st_size,
                )
            )

        backups.sort(key=lambda b: (b.modified, b.filename), reverse=True)
        return backups

    async def restore_backup(self, directory: Path, filename: str) -> Path:
        """Replace the store file with a backup.

        The current file is first saved next to it as
        ``pre-restore-<timestamp>.sqlite``. Pooled connections are closed under
        the write lock; the store reconnects on next use.

        Returns:
            Path of the pre-restore copy

        Raises:
            BackupError: Backup file missing or filename not a plain file name
        """
        if Path(filename).name != filename:
            raise BackupError(f"Invalid backup filename: {filename}")

        source = Path(directory) / filename
        if not source.is_file():
            raise BackupError(f"Backup file does not exist: {source}")

        db_path = Path(self.db_path)
        safety_copy = db_path.parent / f"pre-restore-{self.now().strftime(TIMESTAMP_FORMAT)}.sqlite"

        async with self.store.quiesce():
            await self.store.engine.dispose()
            if db_path.exists():
                await asyncio.to_thread(shutil.copy2, db_path, safety_copy)
            # Stale WAL pages would be replayed on top of the restored file
            for suffix in ("-wal", "-shm"):
                Path(f"{db_path}{suffix}").unlink(missing_ok=True)
            await asyncio.to_thread(shutil.copy2, source, db_path)

        logger.warning("backup_restored", source=str(source), safety_copy=str(safety_copy))
        return safety_copy


class BackupScheduler:
    """Background task backing up the store every ``interval_seconds``.

    Each tick is skipped when no backup directory is configured, or when
    ``skip_unchanged`` is set and no data changed since the last backup.
    Failures are logged and the task keeps running.
    """

    def __init__(
        self,
        manager: BackupManager,
        settings: SettingsRepository,
        interval_seconds: float = 3600.0,
        default_directory: Path | None = None,
        skip_unchanged: bool = True,
    ):
        self.manager = manager
        self.settings = settings
        self.interval_seconds = interval_seconds
        self.default_directory = default_directory
        self.skip_unchanged = skip_unchanged
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def backup_directory(self) -> Path | None:
        configured = await self.settings.get(BACKUP_DIRECTORY)
        if configured:
            return Path(configured)
        return self.default_directory

    async def run_once(self, force: bool = False) -> Path | None:
        """Back up now if there is somewhere to put it and something new.

        Returns:
            Path of the new backup, or None when skipped
        """
        directory = await self.backup_directory()
        if directory is None:
            logger.debug("backup_skipped", reason="no backup directory")
            return None

        data_version = await self.settings.data_version()
        if not force and self.skip_unchanged:
            if data_version == await self.settings.last_backup_version():
                logger.debug("backup_skipped", reason="unchanged", data_version=data_version)
                return None

        path = await self.manager.create_backup(directory)
        await self.settings.set_last_backup_version(data_version)
        await self.settings.set(LAST_BACKUP, dt.datetime.now(dt.timezone.utc).isoformat())
        return path

    async def _loop(self) -> None:
        logger.info("backup_scheduler_started", interval_seconds=self.interval_seconds)
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except Exception:
                logger.exception("backup_failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="hourbook-backup-scheduler")

    async def stop(self) -> None:
        """Cancel the task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("backup_scheduler_stopped")
