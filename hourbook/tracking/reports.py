"""Per-project reports and dashboard statistics."""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, or_, select

from hourbook.billing.calculations import MINUTES_PER_HOUR, compute_total, quantize_money, to_decimal
from hourbook.db.connection import Store
from hourbook.db.models import InvoiceModel, ProjectModel, TimeEntryModel
from hourbook.models import DashboardStatistics, ProjectReport, ProjectStatus, TimeEntry


class ReportService:
    def __init__(self, store: Store):
        self.store = store

    async def project_report(
        self,
        start_date: dt.date | None = None,
        end_date: dt.date | None = None,
        project_ids: Sequence[int] | None = None,
    ) -> list[ProjectReport]:
        """Minutes, hours and value per project, with the entries counted.

        Projects without entries in range are reported with zero minutes.
        ``total_value`` is None for projects without an hourly rate.
        """
        entry_filter = []
        if start_date is not None:
            entry_filter.append(TimeEntryModel.date >= start_date.isoformat())
        if end_date is not None:
            entry_filter.append(TimeEntryModel.date <= end_date.isoformat())

        projects_stmt = select(ProjectModel).order_by(ProjectModel.name)
        if project_ids:
            projects_stmt = projects_stmt.where(ProjectModel.id.in_(project_ids))

        reports: list[ProjectReport] = []
        async with self.store.session() as session:
            projects = (await session.scalars(projects_stmt)).all()
            for project in projects:
                entries = (
                    await session.scalars(
                        select(TimeEntryModel)
                        .where(TimeEntryModel.project_id == project.id, *entry_filter)
                        .order_by(TimeEntryModel.date.desc(), TimeEntryModel.start_time.desc())
                    )
                ).all()

                total_minutes = sum(entry.duration_minutes for entry in entries)
                total_value = None
                if project.hourly_rate is not None:
                    total_value = compute_total([(total_minutes, project.hourly_rate)])

                reports.append(
                    ProjectReport(
                        project_id=project.id,
                        project_name=project.name,
                        client_name=project.client_name,
                        hourly_rate=project.hourly_rate,
                        total_minutes=total_minutes,
                        total_hours=quantize_money(Decimal(total_minutes) / MINUTES_PER_HOUR),
                        total_value=total_value,
                        entries=[TimeEntry.model_validate(entry) for entry in entries],
                    )
                )
        return reports

    async def dashboard_statistics(self) -> DashboardStatistics:
        """Project counts and revenue by project status.

        Unbilled covers entries without an invoice and entries whose invoice
        was cancelled.
        """
        async with self.store.session() as session:
            counts = (
                await session.execute(
                    select(ProjectModel.status, func.count(ProjectModel.id)).group_by(
                        ProjectModel.status
                    )
                )
            ).all()

            revenue_rows = (
                await session.execute(
                    select(
                        ProjectModel.status,
                        TimeEntryModel.duration_minutes,
                        ProjectModel.hourly_rate,
                    ).join(TimeEntryModel, TimeEntryModel.project_id == ProjectModel.id)
                )
            ).all()

            unbilled_rows = (
                await session.execute(
                    select(TimeEntryModel.duration_minutes, ProjectModel.hourly_rate)
                    .join(ProjectModel, TimeEntryModel.project_id == ProjectModel.id)
                    .outerjoin(InvoiceModel, TimeEntryModel.invoice_id == InvoiceModel.id)
                    .where(
                        or_(
                            TimeEntryModel.invoice_id.is_(None),
                            InvoiceModel.status == "cancelled",
                        )
                    )
                )
            ).all()

        count_by_status = {status: count for status, count in counts}
        revenue_by_status: dict[str, Decimal] = {}
        for status in {row.status for row in revenue_rows}:
            revenue_by_status[status] = compute_total(
                (row.duration_minutes, row.hourly_rate)
                for row in revenue_rows
                if row.status == status
            )

        unbilled_minutes = sum(row.duration_minutes for row in unbilled_rows)

        return DashboardStatistics(
            total_projects=sum(count_by_status.values()),
            active_projects=count_by_status.get(ProjectStatus.ACTIVE.value, 0),
            completed_projects=count_by_status.get(ProjectStatus.COMPLETED.value, 0),
            paused_projects=count_by_status.get(ProjectStatus.PAUSED.value, 0),
            total_revenue=compute_total(
                (row.duration_minutes, row.hourly_rate) for row in revenue_rows
            ),
            active_revenue=revenue_by_status.get(ProjectStatus.ACTIVE.value, Decimal("0")),
            completed_revenue=revenue_by_status.get(ProjectStatus.COMPLETED.value, Decimal("0")),
            paused_revenue=revenue_by_status.get(ProjectStatus.PAUSED.value, Decimal("0")),
            unbilled_revenue=compute_total(
                (row.duration_minutes, row.hourly_rate) for row in unbilled_rows
            ),
            unbilled_hours=quantize_money(to_decimal(unbilled_minutes) / MINUTES_PER_HOUR),
        )
