from decimal import Decimal

import pytest
from libs.common.currency import from_minor_units, to_minor_units


@pytest.mark.unit
@pytest.mark.parametrize(
    "amount, expected",
    [
        (Decimal("200.00"), 20000),
        (Decimal("49.99"), 4999),
        (Decimal("0.01"), 1),
        (Decimal("10.005"), 1001),
        (Decimal("10.004"), 1000),
        ("12.5", 1250),
        (7, 700),
    ],
)
def test_to_minor_units_rounds_half_up(amount, expected):
    assert to_minor_units(amount, "inr") == expected


@pytest.mark.unit
def test_zero_decimal_currency_is_not_scaled():
    assert to_minor_units(Decimal("1500"), "JPY") == 1500
    assert from_minor_units(1500, "jpy") == Decimal("1500")


@pytest.mark.unit
def test_from_minor_units():
    assert from_minor_units(9998, "inr") == Decimal("99.98")
    assert from_minor_units(5, "usd") == Decimal("0.05")
