from decimal import Decimal

import pytest

from app.core.errors import ValidationError
from app.core.quantities import distribute_evenly, format_quantity, normalize_optional, normalize_quantity


@pytest.mark.parametrize("value, expected", [
    (0.1, "0.1000"),
    ("  7 ", "7.0000"),
    (3, "3.0000"),
    (Decimal("2.00005"), "2.0001"),
    ("1e2", "100.0000"),
])
def test_normalize_quantity(value, expected):
    assert normalize_quantity(value) == Decimal(expected)
    assert str(normalize_quantity(value)) == expected


def test_float_noise_does_not_break_equality():
    assert normalize_quantity(0.1) + normalize_quantity(0.2) == normalize_quantity(0.3)


@pytest.mark.parametrize("value", [None, True, "x", float("inf"), "NaN", -0.0001])
def test_normalize_quantity_rejects(value):
    with pytest.raises(ValidationError):
        normalize_quantity(value)


def test_error_names_the_field():
    with pytest.raises(ValidationError, match="total_quantity"):
        normalize_quantity("x", "total_quantity")


def test_optional_and_format():
    assert normalize_optional(None) is None
    assert format_quantity(None) is None
    assert format_quantity(Decimal("42.5")) == "42.5000"


@pytest.mark.parametrize("total, parts, expected", [
    ("80", 2, ["40", "40"]),
    ("100", 3, ["33.3334", "33.3333", "33.3333"]),
    ("0.0003", 5, ["0.0001", "0.0001", "0.0001", "0", "0"]),
    ("0", 2, ["0", "0"]),
])
def test_distribute_evenly(total, parts, expected):
    shares = distribute_evenly(Decimal(total), parts)

    assert shares == [Decimal(value) for value in expected]
    assert sum(shares) == Decimal(total)


def test_distribute_evenly_needs_parts():
    with pytest.raises(ValidationError):
        distribute_evenly(Decimal("1"), 0)
