"""Project CRUD."""

from __future__ import annotations

import structlog
from sqlalchemy import func, select

from hourbook.billing.engine import BillingEngine
from hourbook.db.connection import Store
from hourbook.db.models import (
    CustomerModel,
    InvoiceModel,
    ProjectModel,
    TimeEntryModel,
    utc_timestamp,
)
from hourbook.errors import (
    CustomerNotFoundError,
    ProjectInUseError,
    ProjectNotFoundError,
    ValidationError,
)
from hourbook.models import InvoiceStatus, Project, ProjectInput, ProjectStatus, ProjectUpdate

logger = structlog.get_logger(__name__)


# Columns that cannot be cleared through an update
REQUIRED_FIELDS = frozenset({"name", "status"})


class ProjectService:
    def __init__(self, store: Store, billing: BillingEngine):
        self.store = store
        self.billing = billing

    async def _require_customer(self, session, customer_id: int | None) -> None:
        if customer_id is not None and await session.get(CustomerModel, customer_id) is None:
            raise CustomerNotFoundError(customer_id)

    async def _draft_invoice_ids(self, session, project_id: int) -> list[int]:
        stmt = (
            select(TimeEntryModel.invoice_id)
            .join(InvoiceModel, InvoiceModel.id == TimeEntryModel.invoice_id)
            .where(
                TimeEntryModel.project_id == project_id,
                InvoiceModel.status == InvoiceStatus.DRAFT.value,
            )
            .distinct()
            .order_by(TimeEntryModel.invoice_id)
        )
        return list(await session.scalars(stmt))

    async def create(self, data: ProjectInput) -> Project:
        async with self.store.transaction() as session:
            await self._require_customer(session, data.customer_id)
            project = ProjectModel(
                name=data.name,
                hourly_rate=data.hourly_rate,
                client_name=data.client_name,
                customer_id=data.customer_id,
                status=data.status.value,
            )
            session.add(project)
            await session.flush()
            await session.refresh(project)

            logger.info("project_created", project_id=project.id, name=project.name)
            return Project.model_validate(project)

    async def update(self, project_id: int, data: ProjectUpdate) -> Project:
        """Apply a partial update.

        A changed hourly rate recomputes every draft invoice holding this
        project's entries in the same transaction. Finalized invoices keep
        their amounts.

        Raises:
            ValidationError: A required field was set to null
        """
        changes = data.model_dump(exclude_unset=True)
        for key in REQUIRED_FIELDS & changes.keys():
            if changes[key] is None:
                raise ValidationError(f"{key} cannot be cleared")

        async with self.store.transaction() as session:
            project = await session.get(ProjectModel, project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            if "customer_id" in changes:
                await self._require_customer(session, changes["customer_id"])
            if "status" in changes:
                changes["status"] = changes["status"].value

            rate_changed = "hourly_rate" in changes
            for key, value in changes.items():
                setattr(project, key, value)
            project.updated_at = utc_timestamp()
            await session.flush()

            if rate_changed:
                invoice_ids = await self._draft_invoice_ids(session, project_id)
                for invoice_id in invoice_ids:
                    await self.billing.refresh_draft_invoice(session, invoice_id)
                if invoice_ids:
                    logger.info(
                        "project_rate_changed",
                        project_id=project_id,
                        draft_invoice_ids=invoice_ids,
                    )
            return Project.model_validate(project)

    async def delete(self, project_id: int) -> None:
        """Delete a project without time entries.

        Raises:
            ProjectInUseError: Entries still reference the project
        """
        async with self.store.transaction() as session:
            project = await session.get(ProjectModel, project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)

            entry_count = await session.scalar(
                select(func.count(TimeEntryModel.id)).where(TimeEntryModel.project_id == project_id)
            )
            if entry_count:
                raise ProjectInUseError(project_id, entry_count)

            await session.delete(project)
            logger.info("project_deleted", project_id=project_id)

    async def get(self, project_id: int) -> Project:
        async with self.store.session() as session:
            project = await session.get(ProjectModel, project_id)
            if project is None:
                raise ProjectNotFoundError(project_id)
            return Project.model_validate(project)

    async def list(self, status: ProjectStatus | None = None) -> list[Project]:
        stmt = select(ProjectModel).order_by(ProjectModel.name)
        if status is not None:
            stmt = stmt.where(ProjectModel.status == status.value)
        async with self.store.session() as session:
            return [Project.model_validate(p) for p in await session.scalars(stmt)]
