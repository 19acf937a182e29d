"""Display amounts and integer smallest units."""

from decimal import Decimal

import pytest

from hedvac.core.exceptions import ValidationError
from hedvac.utils.amount import HBAR_DECIMALS, format_amount, from_smallest_unit, to_smallest_unit


@pytest.mark.parametrize(
    "amount, decimals, expected",
    [
        ("1.5", HBAR_DECIMALS, 150_000_000),
        (2, HBAR_DECIMALS, 200_000_000),
        ("0.123456789", HBAR_DECIMALS, 12_345_678),
        ("3.999", 2, 399),
        ("42", 0, 42),
    ],
)
def test_to_smallest_unit(amount, decimals, expected):
    assert to_smallest_unit(amount, decimals) == expected


@pytest.mark.parametrize("amount", ["0", "-1", "abc", "NaN", "0.001"])
def test_to_smallest_unit_rejects(amount):
    with pytest.raises(ValidationError):
        to_smallest_unit(amount, 2)


def test_from_smallest_unit():
    assert from_smallest_unit(150_000_000, HBAR_DECIMALS) == Decimal("1.5")
    assert from_smallest_unit(7, 0) == Decimal(7)


def test_format_amount_trims_zeros():
    assert format_amount(150_000_000, HBAR_DECIMALS) == "1.5"
    assert format_amount(100_000_000, HBAR_DECIMALS) == "1"
    assert format_amount(1, HBAR_DECIMALS) == "0.00000001"
    assert format_amount(0, HBAR_DECIMALS) == "0"
    assert format_amount(250, 0) == "250"
