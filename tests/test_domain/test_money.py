"""Tests for minor-unit conversion."""

from __future__ import annotations

from decimal import Decimal

import pytest

from fund_custody.domain.money import minor_unit_factor, to_major_string, to_minor_units


@pytest.mark.parametrize(
    ("currency", "factor"),
    [("USD", 100), ("usd", 100), (None, 100), ("JPY", 1), ("KWD", 1000)],
)
def test_minor_unit_factor(currency: str | None, factor: int) -> None:
    assert minor_unit_factor(currency) == factor


def test_to_minor_units() -> None:
    assert to_minor_units(Decimal("100.00"), "USD") == 10000
    assert to_minor_units(Decimal("12.345"), "USD") == 1235
    assert to_minor_units(Decimal("500"), "JPY") == 500
    assert to_minor_units(Decimal("1.2345"), "KWD") == 1235


def test_to_major_string() -> None:
    assert to_major_string(Decimal("100")) == "100.00"
    assert to_major_string(Decimal("0.005")) == "0.01"
    assert to_major_string(Decimal("12.3400")) == "12.34"
