"""Hourbook Pydantic models for type-safe data validation.

Input models validate payloads handed to services and the billing engine;
output models are built from ORM rows (``from_attributes``).
"""

from __future__ import annotations

import datetime as dt
import re
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

_HHMM = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PAUSED = "paused"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle: draft -> invoiced -> cancelled."""

    DRAFT = "draft"
    INVOICED = "invoiced"
    CANCELLED = "cancelled"  # Terminal


class InvoiceType(str, Enum):
    INTERNAL = "internal"
    EXTERNAL = "external"  # Issued by another system, tracked here


class BillingStatus(str, Enum):
    """Derived label on a time entry reflecting its invoice's stage."""

    UNBILLED = "unbilled"
    IN_DRAFT = "in_draft"
    INVOICED = "invoiced"


# Inputs -------------------------------------------------------------------


class CustomerInput(BaseModel):
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None

    class Config:
        extra = "forbid"


class CustomerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None

    class Config:
        extra = "forbid"


class ProjectInput(BaseModel):
    name: str = Field(min_length=1)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    client_name: str | None = None
    customer_id: int | None = None
    status: ProjectStatus = ProjectStatus.ACTIVE

    class Config:
        extra = "forbid"


class ProjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    client_name: str | None = None
    customer_id: int | None = None
    status: ProjectStatus | None = None

    class Config:
        extra = "forbid"


class TimeEntryInput(BaseModel):
    """New time entry.

    Either ``duration_minutes`` or both ``start_time`` and ``end_time`` must be
    given; the stored duration is always present.
    """

    project_id: int
    date: dt.date
    start_time: str | None = None
    end_time: str | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    description: str | None = None

    class Config:
        extra = "forbid"

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, v: str | None) -> str | None:
        if v is not None and not _HHMM.match(v):
            raise ValueError("time must be HH:MM")
        return v

    @model_validator(mode="after")
    def require_duration_source(self) -> TimeEntryInput:
        if self.duration_minutes is None and not (self.start_time and self.end_time):
            raise ValueError(
                "duration_minutes or both start_time and end_time are required"
            )
        return self


class TimeEntryUpdate(BaseModel):
    project_id: int | None = None
    date: dt.date | None = None
    start_time: str | None = None
    end_time: str | None = None
    duration_minutes: int | None = Field(default=None, gt=0)
    description: str | None = None

    class Config:
        extra = "forbid"

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, v: str | None) -> str | None:
        if v is not None and not _HHMM.match(v):
            raise ValueError("time must be HH:MM")
        return v


class InvoiceCreate(BaseModel):
    invoice_number: str | None = Field(default=None, min_length=1)
    invoice_date: dt.date
    type: InvoiceType = InvoiceType.INTERNAL
    notes: str | None = None

    external_invoice_number: str | None = None
    net_amount: Decimal | None = None
    gross_amount: Decimal | None = None

    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)  # percent
    is_small_business: bool = False

    class Config:
        extra = "forbid"


class InvoiceUpdate(BaseModel):
    """Partial invoice update.

    Only ``notes`` and ``cancellation_reason`` may change once an invoice has
    left draft.
    """

    invoice_number: str | None = Field(default=None, min_length=1)
    invoice_date: dt.date | None = None
    type: InvoiceType | None = None
    notes: str | None = None
    cancellation_reason: str | None = None

    external_invoice_number: str | None = None
    net_amount: Decimal | None = None
    gross_amount: Decimal | None = None

    tax_rate: Decimal | None = Field(default=None, ge=0, le=100)
    is_small_business: bool | None = None

    service_period_start: dt.date | None = None
    service_period_end: dt.date | None = None
    service_period_start_auto: bool | None = None
    service_period_end_auto: bool | None = None

    class Config:
        extra = "forbid"


# Outputs ------------------------------------------------------------------


class Customer(BaseModel):
    id: int
    name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    notes: str | None = None
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class Project(BaseModel):
    id: int
    name: str
    hourly_rate: Decimal | None = None
    client_name: str | None = None
    customer_id: int | None = None
    status: ProjectStatus
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class TimeEntry(BaseModel):
    id: int
    project_id: int
    date: dt.date
    start_time: str | None = None
    end_time: str | None = None
    duration_minutes: int
    description: str | None = None
    invoice_id: int | None = None
    billing_status: BillingStatus
    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class TimeEntryWithProject(TimeEntry):
    """Time entry joined with display fields of its project."""

    project_name: str | None = None
    hourly_rate: Decimal | None = None


class Invoice(BaseModel):
    id: int
    invoice_number: str
    invoice_date: dt.date
    status: InvoiceStatus
    total_amount: Decimal
    notes: str | None = None
    cancellation_reason: str | None = None

    type: InvoiceType
    external_invoice_number: str | None = None
    net_amount: Decimal | None = None
    gross_amount: Decimal | None = None

    tax_rate: Decimal
    is_small_business: bool
    tax_amount: Decimal

    service_period_start: dt.date | None = None
    service_period_end: dt.date | None = None
    service_period_start_auto: bool
    service_period_end_auto: bool

    created_at: str
    updated_at: str

    class Config:
        from_attributes = True


class InvoiceWithEntries(Invoice):
    entries: list[TimeEntryWithProject] = Field(default_factory=list)


class AppliedMigration(BaseModel):
    version: int
    name: str
    applied_at: str

    class Config:
        from_attributes = True


class MigrationResult(BaseModel):
    applied_count: int
    current_version: int


class ProjectReport(BaseModel):
    project_id: int
    project_name: str
    client_name: str | None = None
    hourly_rate: Decimal | None = None
    total_minutes: int
    total_hours: Decimal
    total_value: Decimal | None = None
    entries: list[TimeEntry] = Field(default_factory=list)


class DashboardStatistics(BaseModel):
    total_projects: int = 0
    active_projects: int = 0
    completed_projects: int = 0
    paused_projects: int = 0

    total_revenue: Decimal = Decimal("0")
    active_revenue: Decimal = Decimal("0")
    completed_revenue: Decimal = Decimal("0")
    paused_revenue: Decimal = Decimal("0")

    unbilled_revenue: Decimal = Decimal("0")
    unbilled_hours: Decimal = Decimal("0")


class BackupFile(BaseModel):
    filename: str
    path: str
    modified: dt.datetime
    size: int
