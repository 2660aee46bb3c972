"""Rounding helpers for money values."""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round to 2 decimal places using ROUND_HALF_UP."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)


def ceil_to_cents(amount: Decimal) -> Decimal:
    """Round up to the next cent."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_CEILING)


def ceil_whole(amount: Decimal) -> Decimal:
    """Round up to a whole dollar."""
    return Decimal(amount).quantize(Decimal("1"), rounding=ROUND_CEILING)


def floor_to_cents(amount: Decimal) -> Decimal:
    """Round down to the cent."""
    return Decimal(amount).quantize(CENTS, rounding=ROUND_FLOOR)
