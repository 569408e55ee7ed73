"""Pytest configuration and fixtures for Hourbook tests.

Every store is a fresh SQLite file under ``tmp_path``.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest
import pytest_asyncio

from hourbook.billing.engine import BillingEngine
from hourbook.config import InvoiceConfig
from hourbook.db.connection import Store
from hourbook.migrations.runner import MigrationRunner
from hourbook.models import InvoiceCreate, ProjectInput, TimeEntryInput
from hourbook.tracking.customers import CustomerService
from hourbook.tracking.projects import ProjectService
from hourbook.tracking.time_entries import TimeEntryService

TODAY = dt.date(2024, 3, 1)


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'hourbook.sqlite'}"


@pytest_asyncio.fixture()
async def store(db_url: str):
    """Empty, unmigrated store."""
    store = Store.from_url(db_url)
    try:
        yield store
    finally:
        await store.dispose()


@pytest_asyncio.fixture()
async def migrated_store(store: Store) -> Store:
    """Store at the latest schema version."""
    await MigrationRunner(store).run_pending()
    return store


@pytest.fixture
def engine(migrated_store: Store) -> BillingEngine:
    return BillingEngine(migrated_store, InvoiceConfig(), today=lambda: TODAY)


@pytest.fixture
def projects(migrated_store: Store, engine: BillingEngine) -> ProjectService:
    return ProjectService(migrated_store, engine)


@pytest.fixture
def customers(migrated_store: Store) -> CustomerService:
    return CustomerService(migrated_store)


@pytest.fixture
def time_entries(migrated_store: Store, engine: BillingEngine) -> TimeEntryService:
    return TimeEntryService(migrated_store, engine)


@pytest_asyncio.fixture()
async def project(projects: ProjectService):
    """Project billed at 100 per hour."""
    return await projects.create(ProjectInput(name="Website", hourly_rate=Decimal("100")))


@pytest.fixture
def add_entry(time_entries: TimeEntryService, project):
    """Factory creating unbilled time entries on ``project``."""

    async def _add(minutes: int = 60, day: dt.date = dt.date(2024, 1, 5), project_id: int | None = None):
        return await time_entries.create(
            TimeEntryInput(
                project_id=project_id or project.id,
                date=day,
                duration_minutes=minutes,
            )
        )

    return _add


@pytest.fixture
def new_invoice(engine: BillingEngine):
    """Factory creating draft invoices."""

    async def _create(**fields):
        fields.setdefault("invoice_date", dt.date(2024, 1, 31))
        return await engine.create_invoice(InvoiceCreate(**fields))

    return _create
