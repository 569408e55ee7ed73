"""Integration tests for the invoice lifecycle and entry linkage."""

from __future__ import annotations

import asyncio
import datetime as dt
from decimal import Decimal

import pytest

from hourbook.billing.engine import BillingEngine
from hourbook.config import InvoiceConfig
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
    InvoiceCreate,
    InvoiceStatus,
    InvoiceType,
    InvoiceUpdate,
    ProjectInput,
    ProjectUpdate,
    TimeEntryUpdate,
)

JAN_1 = dt.date(2024, 1, 1)
JAN_5 = dt.date(2024, 1, 5)
JAN_10 = dt.date(2024, 1, 10)
JAN_20 = dt.date(2024, 1, 20)


@pytest.mark.asyncio
async def test_draft_to_invoiced_to_cancelled(engine, time_entries, add_entry, new_invoice):
    """Full lifecycle: attach, finalize, lock, cancel, release."""
    first = await add_entry(minutes=90, day=JAN_5)
    second = await add_entry(minutes=30, day=JAN_10)

    invoice = await new_invoice()
    assert invoice.invoice_number == "INV-2024-001"
    assert invoice.status == InvoiceStatus.DRAFT
    assert invoice.total_amount == Decimal("0")

    draft = await engine.add_time_entries_to_invoice(invoice.id, [first.id, second.id])
    assert draft.total_amount == Decimal("200.00")
    assert draft.service_period_start == JAN_5
    assert draft.service_period_end == JAN_10
    assert {e.billing_status for e in draft.entries} == {BillingStatus.IN_DRAFT}
    assert [e.id for e in draft.entries] == [second.id, first.id]
    assert draft.entries[0].project_name == "Website"

    finalized = await engine.finalize_invoice(invoice.id)
    assert finalized.status == InvoiceStatus.INVOICED
    assert finalized.total_amount == Decimal("200.00")
    assert (await time_entries.get(first.id)).billing_status == BillingStatus.INVOICED

    with pytest.raises(EntryLockedError):
        await engine.remove_time_entries_from_invoice([first.id])
    assert (await time_entries.get(first.id)).invoice_id == invoice.id
    with pytest.raises(EntryLockedError):
        await time_entries.update(first.id, TimeEntryUpdate(description="late edit"))

    cancelled = await engine.cancel_invoice(invoice.id, "  Customer disputed  ")
    assert cancelled.status == InvoiceStatus.CANCELLED
    assert cancelled.cancellation_reason == "Customer disputed"

    # Cancelling leaves the entries attached
    still_attached = await time_entries.get(first.id)
    assert still_attached.invoice_id == invoice.id
    assert still_attached.billing_status == BillingStatus.INVOICED

    await engine.remove_time_entries_from_invoice([first.id, second.id])
    released = await time_entries.get(first.id)
    assert released.invoice_id is None
    assert released.billing_status == BillingStatus.UNBILLED
    assert (await engine.get_invoice(invoice.id)).total_amount == Decimal("200.00")


class TestTotals:
    @pytest.mark.asyncio
    async def test_total_follows_attached_entries(self, engine, add_entry, new_invoice):
        entries = [await add_entry(minutes=m) for m in (60, 30, 15)]
        invoice = await new_invoice()

        await engine.add_time_entries_to_invoice(invoice.id, [e.id for e in entries])
        assert (await engine.get_invoice(invoice.id)).total_amount == Decimal("175.00")

        await engine.remove_time_entries_from_invoice([entries[0].id])
        updated = await engine.get_invoice(invoice.id)
        assert updated.total_amount == Decimal("75.00")
        assert updated.total_amount == await engine.compute_invoice_total(invoice.id)

    @pytest.mark.asyncio
    async def test_entries_across_projects_use_their_own_rate(
        self, engine, projects, add_entry, new_invoice
    ):
        cheap = await projects.create(ProjectInput(name="Support", hourly_rate=Decimal("40")))
        unrated = await projects.create(ProjectInput(name="Pro bono"))
        entries = [
            await add_entry(minutes=60),
            await add_entry(minutes=90, project_id=cheap.id),
            await add_entry(minutes=120, project_id=unrated.id),
        ]
        invoice = await new_invoice()

        result = await engine.add_time_entries_to_invoice(invoice.id, [e.id for e in entries])
        assert result.total_amount == Decimal("160.00")

    @pytest.mark.asyncio
    async def test_editing_a_draft_entry_recomputes_the_draft(
        self, engine, time_entries, add_entry, new_invoice
    ):
        entry = await add_entry(minutes=60, day=JAN_5)
        invoice = await new_invoice()
        await engine.add_time_entries_to_invoice(invoice.id, [entry.id])

        await time_entries.update(entry.id, TimeEntryUpdate(duration_minutes=120, date=JAN_10))

        refreshed = await engine.get_invoice(invoice.id)
        assert refreshed.total_amount == Decimal("200.00")
        assert refreshed.service_period_start == JAN_10
        assert (await time_entries.get(entry.id)).billing_status == BillingStatus.IN_DRAFT

    @pytest.mark.asyncio
    async def test_rate_change_recomputes_drafts_only(
        self, engine, projects, project, add_entry, new_invoice
    ):
        billed = await add_entry(minutes=60, day=JAN_5)
        pending = await add_entry(minutes=60, day=JAN_10)
        done = await new_invoice(tax_rate=Decimal("19"))
        await engine.add_time_entries_to_invoice(done.id, [billed.id])
        await engine.finalize_invoice(done.id)
        draft = await new_invoice(tax_rate=Decimal("19"))
        await engine.add_time_entries_to_invoice(draft.id, [pending.id])

        await projects.update(project.id, ProjectUpdate(hourly_rate=Decimal("150")))

        refreshed = await engine.get_invoice(draft.id)
        assert refreshed.total_amount == Decimal("150.00")
        assert refreshed.total_amount == await engine.compute_invoice_total(draft.id)
        assert refreshed.tax_amount == Decimal("28.50")

        frozen = await engine.get_invoice(done.id)
        assert frozen.total_amount == Decimal("100.00")
        assert frozen.tax_amount == Decimal("19.00")

    @pytest.mark.asyncio
    async def test_tax_from_rate(self, engine, add_entry, new_invoice):
        entry = await add_entry(minutes=120)
        invoice = await new_invoice(tax_rate=Decimal("19"))

        result = await engine.add_time_entries_to_invoice(invoice.id, [entry.id])
        assert result.total_amount == Decimal("200.00")
        assert result.tax_amount == Decimal("38.00")

    @pytest.mark.asyncio
    async def test_small_business_pays_no_tax(self, engine, add_entry, new_invoice):
        entry = await add_entry(minutes=120)
        invoice = await new_invoice(tax_rate=Decimal("19"), is_small_business=True)

        result = await engine.add_time_entries_to_invoice(invoice.id, [entry.id])
        assert result.tax_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_default_tax_rate_from_config(self, migrated_store):
        engine = BillingEngine(
            migrated_store, InvoiceConfig(default_tax_rate=Decimal("7")), today=lambda: JAN_1
        )
        invoice = await engine.create_invoice(InvoiceCreate(invoice_date=JAN_20))
        assert invoice.tax_rate == Decimal("7")


class TestNumbering:
    @pytest.mark.asyncio
    async def test_sequential_numbers(self, engine, new_invoice):
        assert await engine.generate_next_invoice_number() == "INV-2024-001"
        await new_invoice()
        await new_invoice()
        assert await engine.generate_next_invoice_number() == "INV-2024-003"

    @pytest.mark.asyncio
    async def test_sequence_continues_after_manual_number(self, engine, new_invoice):
        await new_invoice(invoice_number="INV-2024-010")
        created = await new_invoice()
        assert created.invoice_number == "INV-2024-011"

    @pytest.mark.asyncio
    async def test_duplicate_number_is_rejected(self, engine, new_invoice):
        await new_invoice(invoice_number="R-1")
        with pytest.raises(InvoiceNumberConflictError):
            await new_invoice(invoice_number="R-1")

        other = await new_invoice()
        with pytest.raises(InvoiceNumberConflictError):
            await engine.update_invoice(other.id, InvoiceUpdate(invoice_number="R-1"))

    @pytest.mark.asyncio
    async def test_custom_prefix(self, migrated_store):
        engine = BillingEngine(
            migrated_store,
            InvoiceConfig(number_prefix="RE", number_digits=4),
            today=lambda: dt.date(2025, 6, 1),
        )
        assert await engine.generate_next_invoice_number() == "RE-2025-0001"


class TestAttach:
    @pytest.mark.asyncio
    async def test_entry_belongs_to_one_invoice(self, engine, time_entries, add_entry, new_invoice):
        taken = await add_entry()
        free = await add_entry()
        first = await new_invoice()
        second = await new_invoice()
        await engine.add_time_entries_to_invoice(first.id, [taken.id])

        with pytest.raises(EntryAlreadyBilledError) as exc_info:
            await engine.add_time_entries_to_invoice(second.id, [free.id, taken.id])
        assert exc_info.value.entry_ids == [taken.id]

        # The whole batch was rejected
        assert (await time_entries.get(free.id)).invoice_id is None
        assert (await engine.get_invoice(second.id)).total_amount == Decimal("0")

    @pytest.mark.asyncio
    async def test_unknown_entry_rejects_batch(self, engine, time_entries, add_entry, new_invoice):
        entry = await add_entry()
        invoice = await new_invoice()

        with pytest.raises(TimeEntryNotFoundError):
            await engine.add_time_entries_to_invoice(invoice.id, [entry.id, 9999])
        assert (await time_entries.get(entry.id)).invoice_id is None

    @pytest.mark.asyncio
    async def test_only_drafts_accept_entries(self, engine, add_entry, new_invoice):
        entry = await add_entry()
        invoice = await new_invoice()
        await engine.finalize_invoice(invoice.id)

        with pytest.raises(InvoiceStateError):
            await engine.add_time_entries_to_invoice(invoice.id, [entry.id])

    @pytest.mark.asyncio
    async def test_empty_batches(self, engine, new_invoice):
        invoice = await new_invoice()
        with pytest.raises(ValidationError):
            await engine.add_time_entries_to_invoice(invoice.id, [])
        await engine.remove_time_entries_from_invoice([])

    @pytest.mark.asyncio
    async def test_missing_invoice(self, engine, add_entry):
        entry = await add_entry()
        with pytest.raises(InvoiceNotFoundError):
            await engine.add_time_entries_to_invoice(404, [entry.id])

    @pytest.mark.asyncio
    async def test_concurrent_attach_has_one_winner(self, engine, add_entry, new_invoice):
        entry = await add_entry()
        first = await new_invoice()
        second = await new_invoice()

        results = await asyncio.gather(
            engine.add_time_entries_to_invoice(first.id, [entry.id]),
            engine.add_time_entries_to_invoice(second.id, [entry.id]),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], EntryAlreadyBilledError)

    @pytest.mark.asyncio
    async def test_remove_unknown_entry(self, engine):
        with pytest.raises(TimeEntryNotFoundError):
            await engine.remove_time_entries_from_invoice([12345])

    @pytest.mark.asyncio
    async def test_unbilled_listing(self, engine, add_entry, new_invoice):
        old = await add_entry(day=JAN_5)
        recent = await add_entry(day=JAN_20)
        billed = await add_entry(day=JAN_10)
        invoice = await new_invoice()
        await engine.add_time_entries_to_invoice(invoice.id, [billed.id])

        unbilled = await engine.get_unbilled_time_entries()
        assert [e.id for e in unbilled] == [recent.id, old.id]
        assert unbilled[0].project_name == "Website"
        assert unbilled[0].hourly_rate == Decimal("100")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_finalize_only_drafts(self, engine, new_invoice):
        invoice = await new_invoice()
        await engine.finalize_invoice(invoice.id)
        with pytest.raises(InvoiceStateError):
            await engine.finalize_invoice(invoice.id)

    @pytest.mark.asyncio
    async def test_cancel_requires_reason(self, engine, new_invoice):
        invoice = await new_invoice()
        for reason in ("", "   "):
            with pytest.raises(EmptyCancellationReasonError):
                await engine.cancel_invoice(invoice.id, reason)
        assert (await engine.get_invoice(invoice.id)).status == InvoiceStatus.DRAFT

    @pytest.mark.asyncio
    async def test_cancel_is_terminal(self, engine, new_invoice):
        invoice = await new_invoice()
        await engine.cancel_invoice(invoice.id, "duplicate")
        with pytest.raises(InvoiceStateError):
            await engine.cancel_invoice(invoice.id, "again")
        with pytest.raises(InvoiceStateError):
            await engine.finalize_invoice(invoice.id)

    @pytest.mark.asyncio
    async def test_finalized_invoice_cannot_be_deleted(self, engine, new_invoice):
        invoice = await new_invoice()
        await engine.finalize_invoice(invoice.id)
        with pytest.raises(IntegrityViolation):
            await engine.delete_invoice(invoice.id)
        assert (await engine.get_invoice(invoice.id)).status == InvoiceStatus.INVOICED

    @pytest.mark.asyncio
    async def test_deleting_a_draft_releases_entries(
        self, engine, time_entries, add_entry, new_invoice
    ):
        entry = await add_entry()
        invoice = await new_invoice()
        await engine.add_time_entries_to_invoice(invoice.id, [entry.id])

        await engine.delete_invoice(invoice.id)

        with pytest.raises(InvoiceNotFoundError):
            await engine.get_invoice(invoice.id)
        released = await time_entries.get(entry.id)
        assert released.invoice_id is None
        assert released.billing_status == BillingStatus.UNBILLED

    @pytest.mark.asyncio
    async def test_cancelled_invoice_can_be_deleted(self, engine, new_invoice):
        invoice = await new_invoice()
        await engine.cancel_invoice(invoice.id, "mistake")
        await engine.delete_invoice(invoice.id)
        assert await engine.list_invoices() == []

    @pytest.mark.asyncio
    async def test_list_by_status(self, engine, new_invoice):
        draft = await new_invoice()
        done = await new_invoice(invoice_date=dt.date(2024, 2, 29))
        await engine.finalize_invoice(done.id)

        assert [i.id for i in await engine.list_invoices()] == [done.id, draft.id]
        assert [i.id for i in await engine.list_invoices(InvoiceStatus.DRAFT)] == [draft.id]


class TestUpdate:
    @pytest.mark.asyncio
    async def test_draft_accepts_any_field(self, engine, new_invoice):
        invoice = await new_invoice()
        updated = await engine.update_invoice(
            invoice.id,
            InvoiceUpdate(invoice_date=JAN_20, notes="Thanks", tax_rate=Decimal("7")),
        )
        assert updated.invoice_date == JAN_20
        assert updated.notes == "Thanks"
        assert updated.tax_rate == Decimal("7")

    @pytest.mark.asyncio
    async def test_finalized_invoice_only_accepts_notes(self, engine, new_invoice):
        invoice = await new_invoice()
        await engine.finalize_invoice(invoice.id)

        updated = await engine.update_invoice(invoice.id, InvoiceUpdate(notes="Paid"))
        assert updated.notes == "Paid"

        with pytest.raises(InvoiceStateError):
            await engine.update_invoice(invoice.id, InvoiceUpdate(invoice_date=JAN_20))
        with pytest.raises(InvoiceStateError):
            await engine.update_invoice(invoice.id, InvoiceUpdate(cancellation_reason="why"))

    @pytest.mark.asyncio
    async def test_cancellation_reason_can_be_reworded(self, engine, new_invoice):
        invoice = await new_invoice()
        await engine.cancel_invoice(invoice.id, "dup")

        with pytest.raises(EmptyCancellationReasonError):
            await engine.update_invoice(invoice.id, InvoiceUpdate(cancellation_reason="  "))

        updated = await engine.update_invoice(
            invoice.id, InvoiceUpdate(cancellation_reason="Duplicate of INV-2024-002")
        )
        assert updated.cancellation_reason == "Duplicate of INV-2024-002"

    @pytest.mark.asyncio
    async def test_required_fields_cannot_be_cleared(self, engine, new_invoice):
        invoice = await new_invoice()
        with pytest.raises(ValidationError):
            await engine.update_invoice(invoice.id, InvoiceUpdate(invoice_number=None))

    @pytest.mark.asyncio
    async def test_external_invoice_needs_external_number(self, engine, new_invoice):
        with pytest.raises(ValidationError):
            await new_invoice(type=InvoiceType.EXTERNAL)

        invoice = await new_invoice()
        with pytest.raises(ValidationError):
            await engine.update_invoice(invoice.id, InvoiceUpdate(type=InvoiceType.EXTERNAL))

        external = await new_invoice(
            type=InvoiceType.EXTERNAL,
            external_invoice_number="EXT-77",
            net_amount=Decimal("1000.00"),
            gross_amount=Decimal("1190.00"),
        )
        assert external.type == InvoiceType.EXTERNAL
        assert external.gross_amount == Decimal("1190.00")


class TestServicePeriod:
    @pytest.mark.asyncio
    async def test_manual_start_survives_new_entries(self, engine, add_entry, new_invoice):
        first = await add_entry(day=JAN_5)
        second = await add_entry(day=JAN_10)
        later = await add_entry(day=JAN_20)
        invoice = await new_invoice()
        await engine.add_time_entries_to_invoice(invoice.id, [first.id, second.id])

        manual = await engine.update_invoice(invoice.id, InvoiceUpdate(service_period_start=JAN_1))
        assert manual.service_period_start == JAN_1
        assert manual.service_period_start_auto is False
        assert manual.service_period_end == JAN_10

        grown = await engine.add_time_entries_to_invoice(invoice.id, [later.id])
        assert grown.service_period_start == JAN_1
        assert grown.service_period_end == JAN_20

        derived = await engine.update_invoice(
            invoice.id, InvoiceUpdate(service_period_start_auto=True)
        )
        assert derived.service_period_start == JAN_5
        assert derived.service_period_start_auto is True

    @pytest.mark.asyncio
    async def test_clearing_a_boundary_makes_it_derived_again(self, engine, add_entry, new_invoice):
        entry = await add_entry(day=JAN_10)
        invoice = await new_invoice()
        await engine.add_time_entries_to_invoice(invoice.id, [entry.id])
        await engine.update_invoice(invoice.id, InvoiceUpdate(service_period_end=JAN_20))

        cleared = await engine.update_invoice(invoice.id, InvoiceUpdate(service_period_end=None))
        assert cleared.service_period_end == JAN_10
        assert cleared.service_period_end_auto is True

    @pytest.mark.asyncio
    async def test_start_after_end_is_rejected(self, engine, add_entry, new_invoice):
        entry = await add_entry(day=JAN_10)
        invoice = await new_invoice()
        await engine.add_time_entries_to_invoice(invoice.id, [entry.id])

        with pytest.raises(InvalidServicePeriodError):
            await engine.update_invoice(invoice.id, InvoiceUpdate(service_period_start=JAN_20))

        unchanged = await engine.get_invoice(invoice.id)
        assert unchanged.service_period_start == JAN_10
        assert unchanged.service_period_start_auto is True

    @pytest.mark.asyncio
    async def test_boundary_and_flag_together(self, engine, new_invoice):
        invoice = await new_invoice()
        with pytest.raises(ValidationError):
            await engine.update_invoice(
                invoice.id,
                InvoiceUpdate(service_period_end=JAN_20, service_period_end_auto=True),
            )
