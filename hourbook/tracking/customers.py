"""Customer CRUD."""

from __future__ import annotations

import structlog
from sqlalchemy import select, update

from hourbook.db.connection import Store
from hourbook.db.models import CustomerModel, ProjectModel, utc_timestamp
from hourbook.errors import CustomerNotFoundError, ValidationError
from hourbook.models import Customer, CustomerInput, CustomerUpdate

logger = structlog.get_logger(__name__)


class CustomerService:
    def __init__(self, store: Store):
        self.store = store

    async def create(self, data: CustomerInput) -> Customer:
        async with self.store.transaction() as session:
            customer = CustomerModel(**data.model_dump())
            session.add(customer)
            await session.flush()
            await session.refresh(customer)

            logger.info("customer_created", customer_id=customer.id)
            return Customer.model_validate(customer)

    async def update(self, customer_id: int, data: CustomerUpdate) -> Customer:
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is None:
            raise ValidationError("name cannot be cleared")

        async with self.store.transaction() as session:
            customer = await session.get(CustomerModel, customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)

            for key, value in changes.items():
                setattr(customer, key, value)
            customer.updated_at = utc_timestamp()
            await session.flush()
            return Customer.model_validate(customer)

    async def delete(self, customer_id: int) -> None:
        """Delete a customer; its projects are kept and unlinked."""
        async with self.store.transaction() as session:
            customer = await session.get(CustomerModel, customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)

            await session.execute(
                update(ProjectModel)
                .where(ProjectModel.customer_id == customer_id)
                .values(customer_id=None)
            )
            await session.delete(customer)
            logger.info("customer_deleted", customer_id=customer_id)

    async def get(self, customer_id: int) -> Customer:
        async with self.store.session() as session:
            customer = await session.get(CustomerModel, customer_id)
            if customer is None:
                raise CustomerNotFoundError(customer_id)
            return Customer.model_validate(customer)

    async def list(self) -> list[Customer]:
        async with self.store.session() as session:
            customers = await session.scalars(select(CustomerModel).order_by(CustomerModel.name))
            return [Customer.model_validate(c) for c in customers]
