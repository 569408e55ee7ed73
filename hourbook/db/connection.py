"""Store handle and transaction management for Hourbook.

The store is constructed once at startup and passed to the migration runner,
billing engine and services. Writes are serialized through a single lock so
each logical operation is one atomic transaction.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from hourbook.config import DBConfig

logger = structlog.get_logger(__name__)


def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    """Enable foreign keys, WAL and transactional DDL on every connection."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself so DDL joins the transaction
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Store:
    """Explicitly owned handle around the relational store."""

    def __init__(self, config: DBConfig):
        self.config = config
        if config.path is not None:
            config.path.parent.mkdir(parents=True, exist_ok=True)

        self.engine: AsyncEngine = create_async_engine(config.url, echo=config.echo)
        _install_sqlite_hooks(self.engine)

        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Don't expire objects after commit
        )
        self._write_lock = asyncio.Lock()

    @classmethod
    def from_url(cls, url: str, echo: bool = False) -> Store:
        return cls(DBConfig(url=url, echo=echo))

    @property
    def path(self) -> Path | None:
        return self.config.path

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read-only session. Nothing is committed."""
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self, bump_version: bool = True) -> AsyncIterator[AsyncSession]:
        """One logical write operation.

        Usage:
            async with store.transaction() as session:
                session.add(model)

        Everything executed inside the block is committed together, or rolled
        back together when the block raises.
        """
        async with self._write_lock:
            async with self._session_factory() as session:
                try:
                    yield session
                    if bump_version:
                        await session.execute(
                            text(
                                "UPDATE meta SET value = CAST(value AS INTEGER) + 1 "
                                "WHERE key = 'data_version'"
                            )
                        )
                    await session.commit()
                except BaseException:
                    await session.rollback()
                    raise

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Exclusive connection-level transaction (schema changes)."""
        async with self._write_lock:
            async with self.engine.begin() as conn:
                yield conn

    @asynccontextmanager
    async def quiesce(self) -> AsyncIterator[None]:
        """Hold off writers and flush the WAL into the main database file."""
        async with self._write_lock:
            async with self.engine.connect() as conn:
                # Checkpoint must run outside a transaction
                raw = await conn.get_raw_connection()
                await raw.driver_connection.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            yield

    async def dispose(self) -> None:
        """Close the engine and its pooled connections."""
        await self.engine.dispose()
        logger.debug("store_disposed", url=self.config.url)
