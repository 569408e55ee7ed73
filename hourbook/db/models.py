"""SQLAlchemy async database models for Hourbook.

Maps the schema produced by the migrations in ``hourbook.migrations``.
Dates are ISO 8601 text and timestamps are ``YYYY-MM-DD HH:MM:SS`` text,
matching what the migrations create.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class CustomerModel(Base):
    """Customer a project is billed to."""

    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text)
    phone: Mapped[str | None] = mapped_column(Text)
    address: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)


class ProjectModel(Base):
    """Project that time is logged against."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    hourly_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))

    # Free-text client kept for databases created before customers existed
    client_name: Mapped[str | None] = mapped_column(Text)
    customer_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("customers.id"), index=True
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default="active")

    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)


class TimeEntryModel(Base):
    """Logged duration against a project on a date."""

    __tablename__ = "time_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[str] = mapped_column(Text, nullable=False)
    start_time: Mapped[str | None] = mapped_column(Text)
    end_time: Mapped[str | None] = mapped_column(Text)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    # Billing linkage, written only by the billing engine
    invoice_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("invoices.id"))
    billing_status: Mapped[str] = mapped_column(Text, nullable=False, default="unbilled")

    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)


class InvoiceModel(Base):
    """Invoice bundling time entries through its lifecycle."""

    __tablename__ = "invoices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    invoice_date: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft")
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    notes: Mapped[str | None] = mapped_column(Text)
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # External invoices (issued by another system)
    type: Mapped[str] = mapped_column(Text, nullable=False, default="internal")
    external_invoice_number: Mapped[str | None] = mapped_column(Text)
    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    gross_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))

    # Tax
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )
    is_small_business: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )

    # Service period, each boundary either derived from entries or manual
    service_period_start: Mapped[str | None] = mapped_column(Text)
    service_period_end: Mapped[str | None] = mapped_column(Text)
    service_period_start_auto: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    service_period_end_auto: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )

    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)


class SettingModel(Base):
    """Key/value application settings (backup directory, last backup)."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class MetaModel(Base):
    """Internal counters (data_version, last_backup_version)."""

    __tablename__ = "meta"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class SchemaMigrationModel(Base):
    """Append-only ledger of applied migrations."""

    __tablename__ = "schema_migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    applied_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_timestamp)
