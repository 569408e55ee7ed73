"""Time entry CRUD and the edit policy for entries attached to invoices.

Entries on a finalized invoice are locked. Entries on a draft invoice may
still be edited; the edit is logged and the draft's total and service period
are recomputed in the same transaction. Attached entries cannot be deleted.
"""

from __future__ import annotations

import datetime as dt

import structlog
from sqlalchemy import select

from hourbook.billing.engine import BillingEngine
from hourbook.db.connection import Store
from hourbook.db.models import InvoiceModel, ProjectModel, TimeEntryModel, utc_timestamp
from hourbook.errors import (
    EntryLockedError,
    InvalidDurationError,
    ProjectNotFoundError,
    TimeEntryNotFoundError,
)
from hourbook.models import (
    BillingStatus,
    InvoiceStatus,
    TimeEntry,
    TimeEntryInput,
    TimeEntryUpdate,
)

logger = structlog.get_logger(__name__)


def duration_between(start_time: str, end_time: str) -> int:
    """Minutes from start to end on the same day ("HH:MM")."""
    start = dt.datetime.strptime(start_time, "%H:%M")
    end = dt.datetime.strptime(end_time, "%H:%M")
    return int((end - start).total_seconds() // 60)


def _require_positive(duration: int | None) -> int:
    if duration is None or duration <= 0:
        raise InvalidDurationError(
            "Duration must be positive, given directly or derived from start/end times"
        )
    return duration


class TimeEntryService:
    """Time entries. Billing linkage is only changed through the billing engine."""

    def __init__(self, store: Store, billing: BillingEngine):
        self.store = store
        self.billing = billing

    async def _require_project(self, session, project_id: int) -> None:
        if await session.get(ProjectModel, project_id) is None:
            raise ProjectNotFoundError(project_id)

    async def _load(self, session, entry_id: int) -> TimeEntryModel:
        entry = await session.get(TimeEntryModel, entry_id)
        if entry is None:
            raise TimeEntryNotFoundError(entry_id)
        return entry

    async def create(self, data: TimeEntryInput) -> TimeEntry:
        duration = data.duration_minutes
        if duration is None:
            duration = duration_between(data.start_time, data.end_time)
        duration = _require_positive(duration)

        async with self.store.transaction() as session:
            await self._require_project(session, data.project_id)
            entry = TimeEntryModel(
                project_id=data.project_id,
                date=data.date.isoformat(),
                start_time=data.start_time,
                end_time=data.end_time,
                duration_minutes=duration,
                description=data.description,
                billing_status=BillingStatus.UNBILLED.value,
            )
            session.add(entry)
            await session.flush()
            await session.refresh(entry)
            return TimeEntry.model_validate(entry)

    async def update(self, entry_id: int, data: TimeEntryUpdate) -> TimeEntry:
        """Edit an entry's own fields.

        Raises:
            EntryLockedError: Entry is on a finalized invoice
            InvalidDurationError: Resulting duration is not positive
        """
        changes = data.model_dump(exclude_unset=True)

        async with self.store.transaction() as session:
            entry = await self._load(session, entry_id)
            if entry.billing_status == BillingStatus.INVOICED.value:
                raise EntryLockedError([entry.id])

            if changes.get("project_id") is not None:
                await self._require_project(session, changes["project_id"])
            if changes.get("date") is not None:
                changes["date"] = changes["date"].isoformat()

            for key, value in changes.items():
                if value is None and key in ("project_id", "date", "duration_minutes"):
                    continue
                setattr(entry, key, value)

            if data.duration_minutes is None and ("start_time" in changes or "end_time" in changes):
                if entry.start_time and entry.end_time:
                    entry.duration_minutes = duration_between(entry.start_time, entry.end_time)
            _require_positive(entry.duration_minutes)
            entry.updated_at = utc_timestamp()

            if entry.invoice_id is not None:
                await session.flush()
                invoice = await session.get(InvoiceModel, entry.invoice_id)
                if invoice is not None and invoice.status == InvoiceStatus.DRAFT.value:
                    logger.warning(
                        "draft_entry_edited",
                        entry_id=entry.id,
                        invoice_id=entry.invoice_id,
                        fields=sorted(changes),
                    )
                elif invoice is not None:
                    logger.info(
                        "cancelled_invoice_entry_edited",
                        entry_id=entry.id,
                        invoice_id=entry.invoice_id,
                        fields=sorted(changes),
                    )
                await self.billing.refresh_draft_invoice(session, entry.invoice_id)

            await session.flush()
            return TimeEntry.model_validate(entry)

    async def delete(self, entry_id: int) -> None:
        """Delete an unattached entry.

        Raises:
            EntryLockedError: Entry is attached to an invoice
        """
        async with self.store.transaction() as session:
            entry = await self._load(session, entry_id)
            if entry.invoice_id is not None:
                raise EntryLockedError([entry.id], reason="entry is attached to an invoice")
            await session.delete(entry)

    async def get(self, entry_id: int) -> TimeEntry:
        async with self.store.session() as session:
            return TimeEntry.model_validate(await self._load(session, entry_id))

    async def list(
        self,
        project_id: int | None = None,
        start_date: dt.date | None = None,
        end_date: dt.date | None = None,
    ) -> list[TimeEntry]:
        """Entries newest first, optionally filtered by project and inclusive date range."""
        stmt = select(TimeEntryModel).order_by(
            TimeEntryModel.date.desc(), TimeEntryModel.start_time.desc(), TimeEntryModel.id.desc()
        )
        if project_id is not None:
            stmt = stmt.where(TimeEntryModel.project_id == project_id)
        if start_date is not None:
            stmt = stmt.where(TimeEntryModel.date >= start_date.isoformat())
        if end_date is not None:
            stmt = stmt.where(TimeEntryModel.date <= end_date.isoformat())

        async with self.store.session() as session:
            return [TimeEntry.model_validate(e) for e in await session.scalars(stmt)]
