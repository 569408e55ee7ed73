"""Unit tests for billing arithmetic."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from hourbook.billing.calculations import (
    apply_service_period,
    compute_tax,
    compute_total,
    derive_service_period,
    entry_amount,
    next_invoice_number,
    to_decimal,
)


class TestComputeTotal:
    def test_sums_duration_times_rate(self):
        lines = [(90, Decimal("100")), (30, Decimal("100"))]
        assert compute_total(lines) == Decimal("200.00")

    def test_missing_rate_counts_as_zero(self):
        assert compute_total([(60, None), (60, Decimal("80"))]) == Decimal("80.00")

    def test_empty_invoice_is_zero(self):
        assert compute_total([]) == Decimal("0.00")

    def test_rounds_half_up_once_per_total(self):
        # 10 min at 0.03/h is exactly 0.005
        assert compute_total([(10, Decimal("0.03"))]) == Decimal("0.01")
        # Three 20-minute lines at 1/h are exactly 1.00 together
        assert compute_total([(20, Decimal("1"))] * 3) == Decimal("1.00")

    def test_accepts_float_rates(self):
        assert compute_total([(60, 99.9)]) == Decimal("99.90")


def test_entry_amount():
    assert entry_amount(45, Decimal("80")) == Decimal("60.00")
    assert entry_amount(45, None) == Decimal("0.00")


def test_to_decimal_uses_string_form_of_floats():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal(None) == Decimal("0")


class TestComputeTax:
    def test_percentage_of_total(self):
        assert compute_tax(Decimal("200.00"), Decimal("19"), False) == Decimal("38.00")

    def test_small_business_pays_no_tax(self):
        assert compute_tax(Decimal("200.00"), Decimal("19"), True) == Decimal("0.00")

    def test_rounding(self):
        assert compute_tax(Decimal("10.05"), Decimal("7"), False) == Decimal("0.70")

    def test_missing_rate(self):
        assert compute_tax(Decimal("50"), None, False) == Decimal("0.00")


class TestServicePeriod:
    def test_min_and_max_of_dates(self):
        dates = ["2024-01-10", dt.date(2024, 1, 5), "2024-01-07"]
        assert derive_service_period(dates) == (dt.date(2024, 1, 5), dt.date(2024, 1, 10))

    def test_no_entries(self):
        assert derive_service_period([]) == (None, None)

    def test_auto_boundaries_follow_entries(self):
        start, end = apply_service_period(
            dt.date(2023, 12, 1), dt.date(2023, 12, 31), True, True, ["2024-01-05", "2024-01-10"]
        )
        assert (start, end) == (dt.date(2024, 1, 5), dt.date(2024, 1, 10))

    def test_manual_boundary_is_kept(self):
        start, end = apply_service_period(
            dt.date(2024, 1, 1), None, False, True, ["2024-01-05", "2024-01-10"]
        )
        assert start == dt.date(2024, 1, 1)
        assert end == dt.date(2024, 1, 10)

    def test_auto_boundaries_clear_without_entries(self):
        assert apply_service_period(
            dt.date(2024, 1, 1), dt.date(2024, 1, 9), True, False, []
        ) == (None, dt.date(2024, 1, 9))


class TestNextInvoiceNumber:
    def test_first_number_of_year(self):
        assert next_invoice_number([], 2024) == "INV-2024-001"

    def test_increments_highest_sequence(self):
        existing = ["INV-2024-001", "INV-2024-007", "INV-2024-003"]
        assert next_invoice_number(existing, 2024) == "INV-2024-008"

    def test_restarts_each_year(self):
        assert next_invoice_number(["INV-2023-041"], 2024) == "INV-2024-001"

    def test_ignores_numbers_outside_the_scheme(self):
        existing = ["EXT-99", "INV-2024-12a", "INV-2024-002"]
        assert next_invoice_number(existing, 2024) == "INV-2024-003"

    def test_grows_past_padding(self):
        assert next_invoice_number(["INV-2024-999"], 2024) == "INV-2024-1000"

    @pytest.mark.parametrize(
        "prefix,digits,expected",
        [("RE", 4, "RE-2024-0001"), ("A.B", 2, "A.B-2024-01")],
    )
    def test_custom_scheme(self, prefix, digits, expected):
        assert next_invoice_number([], 2024, prefix, digits) == expected

    def test_never_collides(self):
        existing = {"INV-2024-001", "INV-2024-002", "INV-2024-010"}
        assert next_invoice_number(existing, 2024) not in existing
