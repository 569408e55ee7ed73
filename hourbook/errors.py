"""Error taxonomy for Hourbook.

Validation, conflict and not-found errors are recoverable and are turned into
typed failures at the command boundary. MigrationError and IntegrityViolation
are fatal and always propagate.
"""

from __future__ import annotations


class HourbookError(Exception):
    """Base class for all Hourbook errors."""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Validation ---------------------------------------------------------------


class ValidationError(HourbookError):
    """Malformed input (missing field, invalid transition target)."""

    code = "validation_error"


class EmptyCancellationReasonError(ValidationError):
    code = "empty_cancellation_reason"


class InvalidDurationError(ValidationError):
    code = "invalid_duration"


class InvalidServicePeriodError(ValidationError):
    code = "invalid_service_period"


# Conflicts ----------------------------------------------------------------


class ConflictError(HourbookError):
    """Request conflicts with the current stored state."""

    code = "conflict"


class InvoiceStateError(ConflictError):
    """Invoice is not in the state required by the operation."""

    code = "invoice_state"

    def __init__(self, invoice_id: int, status: str, action: str):
        super().__init__(f"Cannot {action} invoice {invoice_id} with status '{status}'")
        self.invoice_id = invoice_id
        self.status = status
        self.action = action


class EntryAlreadyBilledError(ConflictError):
    code = "entry_already_billed"

    def __init__(self, entry_ids: list[int]):
        ids = ", ".join(str(i) for i in entry_ids)
        super().__init__(f"Time entries already attached to an invoice: {ids}")
        self.entry_ids = entry_ids


class EntryLockedError(ConflictError):
    """Entry belongs to a finalized invoice and cannot change."""

    code = "entry_locked"

    def __init__(self, entry_ids: list[int], reason: str = "entry is invoiced"):
        ids = ", ".join(str(i) for i in entry_ids)
        super().__init__(f"Time entries locked ({reason}): {ids}")
        self.entry_ids = entry_ids


class InvoiceNumberConflictError(ConflictError):
    code = "invoice_number_conflict"

    def __init__(self, invoice_number: str):
        super().__init__(f"Invoice number '{invoice_number}' already exists")
        self.invoice_number = invoice_number


class ProjectInUseError(ConflictError):
    code = "project_in_use"

    def __init__(self, project_id: int, entry_count: int):
        super().__init__(
            f"Project {project_id} still has {entry_count} time entries"
        )
        self.project_id = project_id
        self.entry_count = entry_count


# Not found ----------------------------------------------------------------


class NotFoundError(HourbookError):
    """Referenced id does not exist."""

    code = "not_found"
    resource = "Resource"

    def __init__(self, resource_id: int | list[int]):
        super().__init__(f"{self.resource} not found: {resource_id}")
        self.resource_id = resource_id


class InvoiceNotFoundError(NotFoundError):
    code = "invoice_not_found"
    resource = "Invoice"


class TimeEntryNotFoundError(NotFoundError):
    code = "time_entry_not_found"
    resource = "Time entry"


class ProjectNotFoundError(NotFoundError):
    code = "project_not_found"
    resource = "Project"


class CustomerNotFoundError(NotFoundError):
    code = "customer_not_found"
    resource = "Customer"


# Fatal --------------------------------------------------------------------


class MigrationError(HourbookError):
    """A schema migration failed; startup must not continue."""

    code = "migration_failed"

    def __init__(self, message: str, version: int | None = None, name: str | None = None):
        super().__init__(message)
        self.version = version
        self.name = name


class IntegrityViolation(HourbookError):
    """Stored state breaks a billing invariant. Indicates a bug."""

    code = "integrity_violation"


class BackupError(HourbookError):
    code = "backup_failed"
