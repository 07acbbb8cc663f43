"""Currency minor-unit helpers.

Ledger amounts are stored as major-unit Decimals. Rails disagree on the
unit they want: the processor takes integer minor units, the banking
network takes a two-decimal major-unit string.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_ZERO_DECIMAL = frozenset({"JPY", "KRW", "VND"})
_THREE_DECIMAL = frozenset({"BHD", "IQD", "JOD", "KWD", "OMR", "TND"})


def minor_unit_factor(currency: str | None) -> int:
    """Return how many minor units make one major unit of the currency."""
    code = (currency or "USD").upper()
    if code in _ZERO_DECIMAL:
        return 1
    if code in _THREE_DECIMAL:
        return 1000
    return 100


def to_minor_units(amount: Decimal, currency: str | None) -> int:
    """Convert a major-unit amount to an integer count of minor units."""
    scaled = Decimal(amount) * minor_unit_factor(currency)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_major_string(amount: Decimal) -> str:
    """Format a major-unit amount with exactly two decimals ("100.00")."""
    return str(Decimal(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
