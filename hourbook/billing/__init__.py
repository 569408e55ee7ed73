"""Invoice lifecycle and billing calculations."""

from hourbook.billing.engine import BillingEngine

__all__ = ["BillingEngine"]
