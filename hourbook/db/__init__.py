"""Database layer for Hourbook with async SQLAlchemy."""

from hourbook.db.connection import Store
from hourbook.db.models import (
    Base,
    CustomerModel,
    InvoiceModel,
    MetaModel,
    ProjectModel,
    SchemaMigrationModel,
    SettingModel,
    TimeEntryModel,
)

__all__ = [
    "Store",
    "Base",
    "CustomerModel",
    "InvoiceModel",
    "MetaModel",
    "ProjectModel",
    "SchemaMigrationModel",
    "SettingModel",
    "TimeEntryModel",
]
