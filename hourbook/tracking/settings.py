"""Key/value settings and the meta counters used to skip redundant backups."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert

from hourbook.db.connection import Store
from hourbook.db.models import MetaModel, SettingModel

BACKUP_DIRECTORY = "backup_directory"
LAST_BACKUP = "last_backup"


class SettingsRepository:
    """Settings writes do not count as data changes for backup purposes."""

    def __init__(self, store: Store):
        self.store = store

    async def get(self, key: str) -> str | None:
        async with self.store.session() as session:
            return await session.scalar(select(SettingModel.value).where(SettingModel.key == key))

    async def set(self, key: str, value: str) -> None:
        stmt = insert(SettingModel).values(key=key, value=value)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SettingModel.key], set_={"value": stmt.excluded.value}
        )
        async with self.store.transaction(bump_version=False) as session:
            await session.execute(stmt)

    async def all(self) -> dict[str, str]:
        async with self.store.session() as session:
            rows = await session.execute(select(SettingModel.key, SettingModel.value))
            return {row.key: row.value for row in rows}

    async def _meta_int(self, key: str) -> int:
        async with self.store.session() as session:
            value = await session.scalar(select(MetaModel.value).where(MetaModel.key == key))
        return int(value) if value is not None else 0

    async def data_version(self) -> int:
        """Counter bumped by every data-changing transaction."""
        return await self._meta_int("data_version")

    async def last_backup_version(self) -> int:
        return await self._meta_int("last_backup_version")

    async def set_last_backup_version(self, version: int) -> None:
        stmt = insert(MetaModel).values(key="last_backup_version", value=str(version))
        stmt = stmt.on_conflict_do_update(
            index_elements=[MetaModel.key], set_={"value": stmt.excluded.value}
        )
        async with self.store.transaction(bump_version=False) as session:
            await session.execute(stmt)
