"""Known migrations, in the order they are applied."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass

from sqlalchemy.engine import Connection

from hourbook.errors import MigrationError
from hourbook.migrations.introspection import SchemaIntrospector
from hourbook.migrations.versions import (
    v001_initial_schema,
    v002_add_invoices,
    v003_add_billing_status,
    v004_add_project_status,
    v005_add_customers_table,
    v006_add_external_invoices,
    v007_add_tax_and_service_period,
    v008_refactor_service_period_auto,
)

UpgradeFn = Callable[[Connection, SchemaIntrospector], None]


@dataclass(frozen=True)
class Migration:
    """One schema change: a version, a readable name and its body."""

    version: int
    name: str
    upgrade: UpgradeFn

    @classmethod
    def from_module(cls, module) -> Migration:
        return cls(version=module.VERSION, name=module.NAME, upgrade=module.upgrade)


def validate_migrations(migrations: Sequence[Migration]) -> None:
    """Require versions 1..N, each exactly once, in ascending order.

    Raises:
        MigrationError: On a gap, a duplicate or an out-of-order version
    """
    for expected, migration in enumerate(migrations, start=1):
        if migration.version != expected:
            raise MigrationError(
                f"Migration set is not contiguous: expected version {expected}, "
                f"got {migration.version} ({migration.name})",
                version=migration.version,
                name=migration.name,
            )


MIGRATIONS: tuple[Migration, ...] = tuple(
    Migration.from_module(module)
    for module in (
        v001_initial_schema,
        v002_add_invoices,
        v003_add_billing_status,
        v004_add_project_status,
        v005_add_customers_table,
        v006_add_external_invoices,
        v007_add_tax_and_service_period,
        v008_refactor_service_period_auto,
    )
)
