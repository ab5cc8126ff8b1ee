"""Currency conversion utilities.

Order totals are stored as decimals in major units (rupees, dollars).
Payment processors take integers in the smallest unit (paise, cents).

Conversion happens once, at the processor boundary, rounding half up.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Union

# ─── constants ───────────────────────────────────────────────────────────────

MINOR_UNITS_PER_MAJOR: int = 100

# Stripe currencies without a minor unit; amounts are sent as-is.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf",
     "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)


# ─── conversion helpers ───────────────────────────────────────────────────────


def _factor(currency: str | None) -> int:
    if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return 1
    return MINOR_UNITS_PER_MAJOR


def to_minor_units(amount: Union[Decimal, int, str], currency: str | None = None) -> int:
    """Convert a major-unit amount to integer minor units (round half up)."""
    value = Decimal(str(amount)) * _factor(currency)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str | None = None) -> Decimal:
    """Convert integer minor units back to a major-unit decimal."""
    factor = _factor(currency)
    if factor == 1:
        return Decimal(amount)
    return (Decimal(amount) / factor).quantize(Decimal("0.01"))
