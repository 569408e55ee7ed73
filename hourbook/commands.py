"""Named-command interface over the billing engine, tracking services and
migration runner.

``CommandDispatcher.dispatch(name, payload)`` validates the payload, runs the
operation and returns a ``CommandResult``. Recoverable errors (validation,
conflict, not found) become typed failures; ``MigrationError`` and
``IntegrityViolation`` propagate to the caller.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from hourbook.billing.engine import BillingEngine
from hourbook.errors import ConflictError, HourbookError, NotFoundError, ValidationError
from hourbook.migrations.runner import MigrationRunner
from hourbook.models import (
    CustomerInput,
    CustomerUpdate,
    InvoiceCreate,
    InvoiceStatus,
    InvoiceUpdate,
    ProjectInput,
    ProjectStatus,
    ProjectUpdate,
    TimeEntryInput,
    TimeEntryUpdate,
)
from hourbook.tracking.customers import CustomerService
from hourbook.tracking.projects import ProjectService
from hourbook.tracking.reports import ReportService
from hourbook.tracking.time_entries import TimeEntryService

logger = structlog.get_logger(__name__)

RECOVERABLE_ERRORS = (ValidationError, ConflictError, NotFoundError)


# Payloads -----------------------------------------------------------------


class IdPayload(BaseModel):
    id: int

    class Config:
        extra = "forbid"


class InvoiceUpdatePayload(BaseModel):
    id: int
    changes: InvoiceUpdate

    class Config:
        extra = "forbid"


class InvoiceCancelPayload(BaseModel):
    id: int
    reason: str

    class Config:
        extra = "forbid"


class InvoiceListPayload(BaseModel):
    status: InvoiceStatus | None = None

    class Config:
        extra = "forbid"


class AddEntriesPayload(BaseModel):
    invoice_id: int
    entry_ids: list[int] = Field(min_length=1)

    class Config:
        extra = "forbid"


class RemoveEntriesPayload(BaseModel):
    entry_ids: list[int] = Field(min_length=1)

    class Config:
        extra = "forbid"


class ProjectUpdatePayload(BaseModel):
    id: int
    changes: ProjectUpdate

    class Config:
        extra = "forbid"


class ProjectListPayload(BaseModel):
    status: ProjectStatus | None = None

    class Config:
        extra = "forbid"


class CustomerUpdatePayload(BaseModel):
    id: int
    changes: CustomerUpdate

    class Config:
        extra = "forbid"


class TimeEntryUpdatePayload(BaseModel):
    id: int
    changes: TimeEntryUpdate

    class Config:
        extra = "forbid"


class TimeEntryListPayload(BaseModel):
    project_id: int | None = None
    start_date: dt.date | None = None
    end_date: dt.date | None = None

    class Config:
        extra = "forbid"


class ReportPayload(BaseModel):
    start_date: dt.date | None = None
    end_date: dt.date | None = None
    project_ids: list[int] | None = None

    class Config:
        extra = "forbid"


# Results ------------------------------------------------------------------


class CommandError(BaseModel):
    code: str
    message: str


class CommandResult(BaseModel):
    ok: bool
    data: Any = None
    error: CommandError | None = None

    @classmethod
    def failure(cls, exc: HourbookError) -> CommandResult:
        return cls(ok=False, error=CommandError(code=exc.code, message=exc.message))


def to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [to_jsonable(item) for item in value]
    return value


@dataclass(frozen=True)
class Command:
    handler: Callable[[Any], Awaitable[Any]]
    payload: type[BaseModel] | None = None


class CommandDispatcher:
    """Routes named operations to the services that implement them."""

    def __init__(
        self,
        engine: BillingEngine,
        runner: MigrationRunner,
        projects: ProjectService,
        customers: CustomerService,
        time_entries: TimeEntryService,
        reports: ReportService | None = None,
    ):
        self.engine = engine
        self.runner = runner
        self.projects = projects
        self.customers = customers
        self.time_entries = time_entries
        self.reports = reports or ReportService(engine.store)
        self.commands = self._build_commands()

    def _build_commands(self) -> dict[str, Command]:
        engine = self.engine
        runner = self.runner
        projects = self.projects
        customers = self.customers
        entries = self.time_entries
        reports = self.reports

        return {
            # Invoices
            "invoice:create": Command(engine.create_invoice, InvoiceCreate),
            "invoice:update": Command(
                lambda p: engine.update_invoice(p.id, p.changes), InvoiceUpdatePayload
            ),
            "invoice:delete": Command(lambda p: engine.delete_invoice(p.id), IdPayload),
            "invoice:finalize": Command(lambda p: engine.finalize_invoice(p.id), IdPayload),
            "invoice:cancel": Command(
                lambda p: engine.cancel_invoice(p.id, p.reason), InvoiceCancelPayload
            ),
            "invoice:add-entries": Command(
                lambda p: engine.add_time_entries_to_invoice(p.invoice_id, p.entry_ids),
                AddEntriesPayload,
            ),
            "invoice:remove-entries": Command(
                lambda p: engine.remove_time_entries_from_invoice(p.entry_ids),
                RemoveEntriesPayload,
            ),
            "invoice:unbilled-entries": Command(lambda _: engine.get_unbilled_time_entries()),
            "invoice:next-number": Command(lambda _: engine.generate_next_invoice_number()),
            "invoice:get": Command(lambda p: engine.get_invoice(p.id), IdPayload),
            "invoice:get-with-entries": Command(
                lambda p: engine.get_invoice_with_entries(p.id), IdPayload
            ),
            "invoice:list": Command(lambda p: engine.list_invoices(p.status), InvoiceListPayload),
            # Migrations
            "migrations:run": Command(lambda _: runner.run_pending()),
            "migrations:current-version": Command(lambda _: runner.current_version()),
            "migrations:needs-migration": Command(lambda _: runner.needs_migration()),
            "migrations:applied": Command(lambda _: runner.applied_migrations()),
            # Projects
            "project:create": Command(projects.create, ProjectInput),
            "project:update": Command(
                lambda p: projects.update(p.id, p.changes), ProjectUpdatePayload
            ),
            "project:delete": Command(lambda p: projects.delete(p.id), IdPayload),
            "project:get": Command(lambda p: projects.get(p.id), IdPayload),
            "project:list": Command(lambda p: projects.list(p.status), ProjectListPayload),
            # Customers
            "customer:create": Command(customers.create, CustomerInput),
            "customer:update": Command(
                lambda p: customers.update(p.id, p.changes), CustomerUpdatePayload
            ),
            "customer:delete": Command(lambda p: customers.delete(p.id), IdPayload),
            "customer:get": Command(lambda p: customers.get(p.id), IdPayload),
            "customer:list": Command(lambda _: customers.list()),
            # Time entries
            "time-entry:create": Command(entries.create, TimeEntryInput),
            "time-entry:update": Command(
                lambda p: entries.update(p.id, p.changes), TimeEntryUpdatePayload
            ),
            "time-entry:delete": Command(lambda p: entries.delete(p.id), IdPayload),
            "time-entry:get": Command(lambda p: entries.get(p.id), IdPayload),
            "time-entry:list": Command(self._list_entries, TimeEntryListPayload),
            # Reports
            "report:projects": Command(self._project_report, ReportPayload),
            "report:dashboard": Command(lambda _: reports.dashboard_statistics()),
        }

    async def _list_entries(self, payload: TimeEntryListPayload):
        return await self.time_entries.list(
            project_id=payload.project_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
        )

    async def _project_report(self, payload: ReportPayload):
        return await self.reports.project_report(
            start_date=payload.start_date,
            end_date=payload.end_date,
            project_ids=payload.project_ids,
        )

    async def dispatch(self, name: str, payload: dict[str, Any] | None = None) -> CommandResult:
        """Run one named operation.

        Args:
            name: Operation name, e.g. ``invoice:finalize``
            payload: Operation arguments, validated against its payload model

        Returns:
            CommandResult with JSON-compatible ``data`` on success

        Raises:
            MigrationError: Schema migration failed
            IntegrityViolation: Stored state breaks a billing invariant
        """
        command = self.commands.get(name)
        if command is None:
            return CommandResult.failure(ValidationError(f"Unknown operation: {name}"))

        try:
            args = command.payload.model_validate(payload or {}) if command.payload else None
            result = await command.handler(args)
        except PydanticValidationError as exc:
            logger.info("command_rejected", command=name, code="validation_error")
            return CommandResult.failure(ValidationError(_describe(exc)))
        except RECOVERABLE_ERRORS as exc:
            logger.info("command_rejected", command=name, code=exc.code, error=exc.message)
            return CommandResult.failure(exc)

        return CommandResult(ok=True, data=to_jsonable(result))


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "payload"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)
