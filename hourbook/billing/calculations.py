"""Pure billing arithmetic: totals, tax, service periods, invoice numbers.

Money is kept as Decimal and rounded to cents with ROUND_HALF_UP only once
per total, never per line.
"""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
MINUTES_PER_HOUR = Decimal(60)


def to_decimal(value: Decimal | float | int | str | None) -> Decimal:
    """Coerce a stored numeric (REAL columns come back as float) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def entry_amount(duration_minutes: int, hourly_rate: Decimal | float | None) -> Decimal:
    """Value of one entry: duration_minutes / 60 * hourly_rate, missing rate = 0."""
    return quantize_money(Decimal(duration_minutes) * to_decimal(hourly_rate) / MINUTES_PER_HOUR)


def compute_total(lines: Iterable[tuple[int, Decimal | float | None]]) -> Decimal:
    """Invoice total over (duration_minutes, hourly_rate) pairs.

    Example:
        >>> compute_total([(90, Decimal("100")), (30, Decimal("100"))])
        Decimal('200.00')
    """
    rate_minutes = sum(
        (Decimal(minutes) * to_decimal(rate) for minutes, rate in lines),
        Decimal("0"),
    )
    return quantize_money(rate_minutes / MINUTES_PER_HOUR)


def compute_tax(
    total: Decimal, tax_rate: Decimal | float | None, is_small_business: bool
) -> Decimal:
    """Tax on a net total. ``tax_rate`` is a percentage (19 means 19 %).

    Small businesses exempt from VAT always pay 0.
    """
    if is_small_business:
        return Decimal("0.00")
    return quantize_money(to_decimal(total) * to_decimal(tax_rate) / Decimal(100))


def derive_service_period(
    dates: Iterable[dt.date | str],
) -> tuple[dt.date | None, dt.date | None]:
    """Earliest and latest date of a set of entries, (None, None) when empty."""
    parsed = [d if isinstance(d, dt.date) else dt.date.fromisoformat(d) for d in dates]
    if not parsed:
        return None, None
    return min(parsed), max(parsed)


def apply_service_period(
    start: dt.date | None,
    end: dt.date | None,
    start_auto: bool,
    end_auto: bool,
    dates: Iterable[dt.date | str],
) -> tuple[dt.date | None, dt.date | None]:
    """Re-derive each boundary still flagged auto; manual boundaries are kept."""
    derived_start, derived_end = derive_service_period(dates)
    return (
        derived_start if start_auto else start,
        derived_end if end_auto else end,
    )


def next_invoice_number(
    existing: Iterable[str], year: int, prefix: str = "INV", digits: int = 3
) -> str:
    """Next sequential number of the form ``<prefix>-<year>-NNN``.

    The sequence restarts every year. Numbers not following the scheme are
    ignored for sequencing but never returned, since the result is always
    greater than every sequenced number of that year.

    Example:
        >>> next_invoice_number(["INV-2024-001", "INV-2024-007"], 2024)
        'INV-2024-008'
    """
    pattern = re.compile(rf"^{re.escape(prefix)}-{year}-(\d+)$")
    highest = 0
    for number in existing:
        match = pattern.match(number)
        if match:
            highest = max(highest, int(match.group(1)))

    return f"{prefix}-{year}-{highest + 1:0{digits}d}"
