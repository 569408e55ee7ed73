"""Project, customer and time entry bookkeeping outside the billing engine."""

from hourbook.tracking.customers import CustomerService
from hourbook.tracking.projects import ProjectService
from hourbook.tracking.reports import ReportService
from hourbook.tracking.settings import SettingsRepository
from hourbook.tracking.time_entries import TimeEntryService

__all__ = [
    "CustomerService",
    "ProjectService",
    "ReportService",
    "SettingsRepository",
    "TimeEntryService",
]
