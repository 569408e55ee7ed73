"""Billing engine: invoice lifecycle and the invoice <-> time entry link.

Every public operation is one store transaction. Within it the engine
rewrites the affected entries' ``billing_status`` from the invoice status it
just set, and recomputes total, tax and auto service-period boundaries of the
draft invoices it touched.

Lifecycle:
    draft --finalize--> invoiced --cancel--> cancelled
    draft --cancel--> cancelled
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Callable, Sequence
from decimal import Decimal

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from hourbook.billing.calculations import (
    apply_service_period,
    compute_tax,
    compute_total,
    next_invoice_number,
)
from hourbook.config import InvoiceConfig
from hourbook.db.connection import Store
from hourbook.db.models import InvoiceModel, ProjectModel, TimeEntryModel, utc_timestamp
from hourbook.errors import (
    EmptyCancellationReasonError,
    EntryAlreadyBilledError,
    EntryLockedError,
    IntegrityViolation,
    InvalidServicePeriodError,
    InvoiceNotFoundError,
    InvoiceNumberConflictError,
    InvoiceStateError,
    TimeEntryNotFoundError,
    ValidationError,
)
from hourbook.models import (
    BillingStatus,
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceType,
    InvoiceUpdate,
    InvoiceWithEntries,
    TimeEntryWithProject,
)

logger = structlog.get_logger(__name__)

# Fields that stay editable after an invoice leaves draft
POST_DRAFT_FIELDS = frozenset({"notes", "cancellation_reason"})

# Columns that cannot be cleared through an update
REQUIRED_FIELDS = frozenset(
    {"invoice_number", "invoice_date", "type", "tax_rate", "is_small_business"}
)

# Entry billing status implied by the status of its invoice
ENTRY_STATUS_FOR_INVOICE = {
    InvoiceStatus.DRAFT.value: BillingStatus.IN_DRAFT.value,
    InvoiceStatus.INVOICED.value: BillingStatus.INVOICED.value,
}


def _parse_date(value: str | None) -> dt.date | None:
    return dt.date.fromisoformat(value) if value else None


def _format_date(value: dt.date | None) -> str | None:
    return value.isoformat() if value else None


def entries_with_project_query():
    """Time entries joined with their project's display fields."""
    return select(
        TimeEntryModel,
        ProjectModel.name.label("project_name"),
        ProjectModel.hourly_rate.label("hourly_rate"),
    ).outerjoin(ProjectModel, TimeEntryModel.project_id == ProjectModel.id)


def to_entry_with_project(row) -> TimeEntryWithProject:
    entry = TimeEntryWithProject.model_validate(row.TimeEntryModel)
    return entry.model_copy(
        update={"project_name": row.project_name, "hourly_rate": row.hourly_rate}
    )


class BillingEngine:
    """Invoice operations over an explicitly owned store.

    Args:
        store: Store handle shared with the rest of the application
        config: Numbering and tax defaults
        today: Clock used for invoice numbering
    """

    def __init__(
        self,
        store: Store,
        config: InvoiceConfig | None = None,
        today: Callable[[], dt.date] = dt.date.today,
    ):
        self.store = store
        self.config = config or InvoiceConfig()
        self.today = today

    # Internal helpers (run inside a caller's session) -------------------

    async def _load_invoice(self, session: AsyncSession, invoice_id: int) -> InvoiceModel:
        invoice = await session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    @staticmethod
    def _require_status(invoice: InvoiceModel, allowed: set[InvoiceStatus], action: str) -> None:
        if invoice.status not in {s.value for s in allowed}:
            raise InvoiceStateError(invoice.id, invoice.status, action)

    async def _next_number(self, session: AsyncSession) -> str:
        year = self.today().year
        prefix = f"{self.config.number_prefix}-{year}-"
        existing = await session.scalars(
            select(InvoiceModel.invoice_number).where(
                InvoiceModel.invoice_number.like(f"{prefix}%")
            )
        )
        return next_invoice_number(
            existing.all(), year, self.config.number_prefix, self.config.number_digits
        )

    async def _number_taken(
        self, session: AsyncSession, number: str, exclude_id: int | None = None
    ) -> bool:
        stmt = select(InvoiceModel.id).where(InvoiceModel.invoice_number == number)
        if exclude_id is not None:
            stmt = stmt.where(InvoiceModel.id != exclude_id)
        return (await session.scalar(stmt)) is not None

    async def _recompute(self, session: AsyncSession, invoice: InvoiceModel) -> None:
        """Rederive total, tax and auto service-period boundaries from linked entries."""
        rows = (
            await session.execute(
                select(
                    TimeEntryModel.duration_minutes,
                    ProjectModel.hourly_rate,
                    TimeEntryModel.date,
                )
                .outerjoin(ProjectModel, TimeEntryModel.project_id == ProjectModel.id)
                .where(TimeEntryModel.invoice_id == invoice.id)
            )
        ).all()

        total = compute_total((row.duration_minutes, row.hourly_rate) for row in rows)
        start, end = apply_service_period(
            _parse_date(invoice.service_period_start),
            _parse_date(invoice.service_period_end),
            invoice.service_period_start_auto,
            invoice.service_period_end_auto,
            (row.date for row in rows),
        )

        invoice.total_amount = total
        invoice.tax_amount = compute_tax(total, invoice.tax_rate, invoice.is_small_business)
        invoice.service_period_start = _format_date(start)
        invoice.service_period_end = _format_date(end)
        invoice.updated_at = utc_timestamp()

    async def refresh_draft_invoice(self, session: AsyncSession, invoice_id: int) -> None:
        """Recompute a draft invoice after one of its entries changed.

        Non-draft invoices are left alone: their amounts are frozen.

        Raises:
            IntegrityViolation: If the invoice does not exist
        """
        invoice = await session.get(InvoiceModel, invoice_id)
        if invoice is None:
            raise IntegrityViolation(
                f"Time entry references missing invoice {invoice_id}"
            )
        if invoice.status == InvoiceStatus.DRAFT.value:
            await self._recompute(session, invoice)

    async def _sync_entry_status(self, session: AsyncSession, invoice: InvoiceModel) -> None:
        """Rewrite billing_status of linked entries from the invoice status.

        Cancelled invoices keep whatever label their entries carried.
        """
        status = ENTRY_STATUS_FOR_INVOICE.get(invoice.status)
        if status is None:
            return
        await session.execute(
            update(TimeEntryModel)
            .where(TimeEntryModel.invoice_id == invoice.id)
            .values(billing_status=status)
        )

    async def _with_entries(self, session: AsyncSession, invoice: InvoiceModel) -> InvoiceWithEntries:
        rows = await session.execute(
            entries_with_project_query()
            .where(TimeEntryModel.invoice_id == invoice.id)
            .order_by(TimeEntryModel.date.desc(), TimeEntryModel.id.desc())
        )
        base = Invoice.model_validate(invoice)
        return InvoiceWithEntries(
            **base.model_dump(), entries=[to_entry_with_project(row) for row in rows]
        )

    # Queries ------------------------------------------------------------

    async def get_invoice(self, invoice_id: int) -> Invoice:
        async with self.store.session() as session:
            return Invoice.model_validate(await self._load_invoice(session, invoice_id))

    async def get_invoice_with_entries(self, invoice_id: int) -> InvoiceWithEntries:
        async with self.store.session() as session:
            invoice = await self._load_invoice(session, invoice_id)
            return await self._with_entries(session, invoice)

    async def list_invoices(self, status: InvoiceStatus | None = None) -> list[Invoice]:
        stmt = select(InvoiceModel).order_by(
            InvoiceModel.invoice_date.desc(), InvoiceModel.id.desc()
        )
        if status is not None:
            stmt = stmt.where(InvoiceModel.status == status.value)
        async with self.store.session() as session:
            invoices = await session.scalars(stmt)
            return [Invoice.model_validate(invoice) for invoice in invoices]

    async def get_unbilled_time_entries(self) -> list[TimeEntryWithProject]:
        """Entries not attached to any invoice, newest first."""
        stmt = (
            entries_with_project_query()
            .where(TimeEntryModel.invoice_id.is_(None))
            .order_by(TimeEntryModel.date.desc(), TimeEntryModel.id.desc())
        )
        async with self.store.session() as session:
            rows = await session.execute(stmt)
            return [to_entry_with_project(row) for row in rows]

    async def generate_next_invoice_number(self) -> str:
        """Preview the number the next created invoice would receive."""
        async with self.store.session() as session:
            return await self._next_number(session)

    async def compute_invoice_total(self, invoice_id: int) -> Decimal:
        """Sum of linked entries at their project's hourly rate, without storing it."""
        async with self.store.session() as session:
            await self._load_invoice(session, invoice_id)
            rows = await session.execute(
                select(TimeEntryModel.duration_minutes, ProjectModel.hourly_rate)
                .outerjoin(ProjectModel, TimeEntryModel.project_id == ProjectModel.id)
                .where(TimeEntryModel.invoice_id == invoice_id)
            )
            return compute_total((row.duration_minutes, row.hourly_rate) for row in rows)

    # Commands -----------------------------------------------------------

    async def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Create a draft invoice.

        The number is generated in the same transaction when not supplied.

        Raises:
            ValidationError: External invoice without external_invoice_number
            InvoiceNumberConflictError: Number already used
        """
        if data.type == InvoiceType.EXTERNAL and not data.external_invoice_number:
            raise ValidationError("External invoices require external_invoice_number")

        tax_rate = data.tax_rate if data.tax_rate is not None else self.config.default_tax_rate

        async with self.store.transaction() as session:
            number = data.invoice_number or await self._next_number(session)
            if await self._number_taken(session, number):
                raise InvoiceNumberConflictError(number)

            invoice = InvoiceModel(
                invoice_number=number,
                invoice_date=data.invoice_date.isoformat(),
                status=InvoiceStatus.DRAFT.value,
                total_amount=Decimal("0.00"),
                notes=data.notes,
                type=data.type.value,
                external_invoice_number=data.external_invoice_number,
                net_amount=data.net_amount,
                gross_amount=data.gross_amount,
                tax_rate=tax_rate,
                is_small_business=data.is_small_business,
                tax_amount=Decimal("0.00"),
                service_period_start_auto=True,
                service_period_end_auto=True,
            )
            session.add(invoice)
            await session.flush()
            await session.refresh(invoice)

            logger.info("invoice_created", invoice_id=invoice.id, invoice_number=number)
            return Invoice.model_validate(invoice)

    async def update_invoice(self, invoice_id: int, data: InvoiceUpdate) -> Invoice:
        """Apply a partial update.

        Drafts accept every field. Other invoices accept ``notes`` and, on
        cancelled invoices, a non-empty ``cancellation_reason``.

        Setting a service-period boundary makes it manual; setting its auto
        flag back to true re-derives it from the linked entries.

        Raises:
            InvoiceStateError: Field not editable in the current status
            InvalidServicePeriodError: Start after end
            ValidationError: Boundary and its auto flag supplied together
        """
        changes = data.model_dump(exclude_unset=True)
        for key in REQUIRED_FIELDS & changes.keys():
            if changes[key] is None:
                raise ValidationError(f"{key} cannot be cleared")

        for boundary in ("start", "end"):
            value_key = f"service_period_{boundary}"
            auto_key = f"service_period_{boundary}_auto"
            if value_key in changes and auto_key in changes:
                raise ValidationError(f"Set either {value_key} or {auto_key}, not both")

        async with self.store.transaction() as session:
            invoice = await self._load_invoice(session, invoice_id)

            if invoice.status != InvoiceStatus.DRAFT.value:
                locked = set(changes) - POST_DRAFT_FIELDS
                if locked:
                    raise InvoiceStateError(
                        invoice.id, invoice.status, f"update {', '.join(sorted(locked))} of"
                    )

            if "cancellation_reason" in changes:
                if invoice.status != InvoiceStatus.CANCELLED.value:
                    raise InvoiceStateError(
                        invoice.id, invoice.status, "set a cancellation reason on"
                    )
                reason = (changes["cancellation_reason"] or "").strip()
                if not reason:
                    raise EmptyCancellationReasonError("Cancellation reason must not be empty")
                changes["cancellation_reason"] = reason

            number = changes.get("invoice_number")
            if number is not None and await self._number_taken(session, number, exclude_id=invoice.id):
                raise InvoiceNumberConflictError(number)

            if changes.get("type") == InvoiceType.EXTERNAL:
                external_number = changes.get("external_invoice_number", invoice.external_invoice_number)
                if not external_number:
                    raise ValidationError("External invoices require external_invoice_number")

            for key in ("start", "end"):
                value_key = f"service_period_{key}"
                auto_key = f"service_period_{key}_auto"
                if value_key in changes:
                    changes[value_key] = _format_date(changes[value_key])
                    changes[auto_key] = changes[value_key] is None
            if "invoice_date" in changes:
                changes["invoice_date"] = _format_date(changes["invoice_date"])
            if "type" in changes:
                changes["type"] = changes["type"].value

            for key, value in changes.items():
                setattr(invoice, key, value)

            start = _parse_date(invoice.service_period_start)
            end = _parse_date(invoice.service_period_end)
            if invoice.status == InvoiceStatus.DRAFT.value:
                await self._recompute(session, invoice)
                start = _parse_date(invoice.service_period_start)
                end = _parse_date(invoice.service_period_end)
            else:
                invoice.updated_at = utc_timestamp()

            if start and end and start > end:
                raise InvalidServicePeriodError(
                    f"Service period start {start} is after end {end}"
                )

            await session.flush()
            logger.info("invoice_updated", invoice_id=invoice.id, fields=sorted(data.model_fields_set))
            return Invoice.model_validate(invoice)

    async def delete_invoice(self, invoice_id: int) -> None:
        """Delete a draft or cancelled invoice, releasing its entries first.

        Raises:
            IntegrityViolation: Invoice is invoiced (finalized invoices are permanent)
        """
        async with self.store.transaction() as session:
            invoice = await self._load_invoice(session, invoice_id)
            if invoice.status == InvoiceStatus.INVOICED.value:
                raise IntegrityViolation(
                    f"Refusing to delete finalized invoice {invoice.invoice_number}"
                )

            released = await session.execute(
                update(TimeEntryModel)
                .where(TimeEntryModel.invoice_id == invoice.id)
                .values(invoice_id=None, billing_status=BillingStatus.UNBILLED.value)
            )
            await session.delete(invoice)

            logger.info(
                "invoice_deleted",
                invoice_id=invoice_id,
                released_entries=released.rowcount,
            )

    async def finalize_invoice(self, invoice_id: int) -> Invoice:
        """Move a draft to invoiced and lock its entries.

        Raises:
            InvoiceStateError: Invoice is not a draft
        """
        async with self.store.transaction() as session:
            invoice = await self._load_invoice(session, invoice_id)
            self._require_status(invoice, {InvoiceStatus.DRAFT}, "finalize")

            await self._recompute(session, invoice)
            invoice.status = InvoiceStatus.INVOICED.value
            await self._sync_entry_status(session, invoice)
            await session.flush()

            logger.info(
                "invoice_finalized",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                total_amount=str(invoice.total_amount),
            )
            return Invoice.model_validate(invoice)

    async def cancel_invoice(self, invoice_id: int, reason: str) -> Invoice:
        """Cancel a draft or invoiced invoice.

        Linked entries stay attached and keep their billing status; releasing
        them is a separate remove operation.

        Raises:
            EmptyCancellationReasonError: Reason is empty or whitespace
            InvoiceStateError: Invoice is already cancelled
        """
        reason = (reason or "").strip()
        if not reason:
            raise EmptyCancellationReasonError("Cancellation reason must not be empty")

        async with self.store.transaction() as session:
            invoice = await self._load_invoice(session, invoice_id)
            self._require_status(
                invoice, {InvoiceStatus.DRAFT, InvoiceStatus.INVOICED}, "cancel"
            )

            invoice.status = InvoiceStatus.CANCELLED.value
            invoice.cancellation_reason = reason
            invoice.updated_at = utc_timestamp()
            await session.flush()

            logger.info("invoice_cancelled", invoice_id=invoice.id, reason=reason)
            return Invoice.model_validate(invoice)

    async def add_time_entries_to_invoice(
        self, invoice_id: int, entry_ids: Sequence[int]
    ) -> InvoiceWithEntries:
        """Attach unbilled entries to a draft invoice, all or none.

        Raises:
            InvoiceStateError: Invoice is not a draft
            TimeEntryNotFoundError: Some ids do not exist
            EntryAlreadyBilledError: Some entries are attached to an invoice
        """
        ids = sorted(set(entry_ids))
        if not ids:
            raise ValidationError("No time entries given")

        async with self.store.transaction() as session:
            invoice = await self._load_invoice(session, invoice_id)
            self._require_status(invoice, {InvoiceStatus.DRAFT}, "add entries to")

            entries = (
                await session.scalars(select(TimeEntryModel).where(TimeEntryModel.id.in_(ids)))
            ).all()
            missing = sorted(set(ids) - {entry.id for entry in entries})
            if missing:
                raise TimeEntryNotFoundError(missing)

            attached = sorted(entry.id for entry in entries if entry.invoice_id is not None)
            if attached:
                raise EntryAlreadyBilledError(attached)

            for entry in entries:
                entry.invoice_id = invoice.id
            await session.flush()

            await self._sync_entry_status(session, invoice)
            await self._recompute(session, invoice)
            await session.flush()

            logger.info("invoice_entries_added", invoice_id=invoice.id, entry_ids=ids)
            return await self._with_entries(session, invoice)

    async def remove_time_entries_from_invoice(self, entry_ids: Sequence[int]) -> None:
        """Release entries back to the unbilled pool, all or none.

        Raises:
            TimeEntryNotFoundError: Some ids do not exist
            EntryLockedError: Some entries belong to an invoiced invoice
            IntegrityViolation: An entry references a missing invoice
        """
        ids = sorted(set(entry_ids))
        if not ids:
            return

        async with self.store.transaction() as session:
            rows = (
                await session.execute(
                    select(TimeEntryModel.id, TimeEntryModel.invoice_id, InvoiceModel.status)
                    .outerjoin(InvoiceModel, TimeEntryModel.invoice_id == InvoiceModel.id)
                    .where(TimeEntryModel.id.in_(ids))
                )
            ).all()

            missing = sorted(set(ids) - {row.id for row in rows})
            if missing:
                raise TimeEntryNotFoundError(missing)

            dangling = [row.id for row in rows if row.invoice_id is not None and row.status is None]
            if dangling:
                raise IntegrityViolation(
                    f"Time entries reference missing invoices: {dangling}"
                )

            locked = sorted(row.id for row in rows if row.status == InvoiceStatus.INVOICED.value)
            if locked:
                raise EntryLockedError(locked, reason="invoice is finalized")

            affected = {row.invoice_id for row in rows if row.invoice_id is not None}
            await session.execute(
                update(TimeEntryModel)
                .where(TimeEntryModel.id.in_(ids))
                .values(invoice_id=None, billing_status=BillingStatus.UNBILLED.value)
            )

            for affected_id in sorted(affected):
                await self.refresh_draft_invoice(session, affected_id)

            logger.info(
                "invoice_entries_removed", entry_ids=ids, invoice_ids=sorted(affected)
            )

