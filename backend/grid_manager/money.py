"""
Fixed-point money helpers.

All monetary amounts are stored as integer cents. Tax rates are stored in
basis points (2100 = 21.00%). Arithmetic that can produce fractions of a cent
goes through Decimal and is rounded half-up exactly once, per line.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

# Maximum amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

# 100% expressed in basis points
MAX_TAX_RATE_BPS = 10_000

_CENT = Decimal("0.01")


class MoneyError(ValueError):
    """Raised for unparseable or out-of-range monetary input."""


@dataclass(frozen=True)
class LineTotals:
    subtotal_cents: int
    tax_cents: int

    @property
    def total_cents(self) -> int:
        return self.subtotal_cents + self.tax_cents


def to_cents(value, field: str = "amount") -> int:
    """
    Convert a client-supplied decimal amount ("12.50", 12.5, 12) to cents.

    Floats are routed through str() so 0.1 becomes exactly 10 cents.
    """
    if value is None or isinstance(value, bool):
        raise MoneyError(f"{field} must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise MoneyError(f"{field} must be a number")
    if not amount.is_finite():
        raise MoneyError(f"{field} must be a number")
    if amount != amount.quantize(_CENT):
        raise MoneyError(f"{field} cannot have more than 2 decimal places")
    cents = int(amount.quantize(_CENT) * 100)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise MoneyError(f"{field} is out of range")
    return cents


def percent_to_bps(value, field: str = "tax_rate") -> int:
    """Convert a percentage ("21", 10.5) to basis points."""
    if value is None or isinstance(value, bool):
        raise MoneyError(f"{field} must be a number")
    try:
        pct = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise MoneyError(f"{field} must be a number")
    if not pct.is_finite() or pct < 0 or pct > 100:
        raise MoneyError(f"{field} must be between 0 and 100")
    return int((pct * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_line(unit_price_cents: int, quantity: int, tax_rate_bps: int) -> LineTotals:
    """
    unit_price x quantity, plus tax at tax_rate_bps rounded half-up to the cent.

    >>> compute_line(10000, 2, 2100)
    LineTotals(subtotal_cents=20000, tax_cents=4200)
    """
    subtotal = unit_price_cents * quantity
    tax = (Decimal(subtotal) * Decimal(tax_rate_bps) / Decimal(MAX_TAX_RATE_BPS)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return LineTotals(subtotal_cents=subtotal, tax_cents=int(tax))


def format_cents(cents: int | None) -> str | None:
    """30250 -> "302.50" """
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(_CENT))


def bps_to_percent(bps: int | None) -> str | None:
    if bps is None:
        return None
    return str((Decimal(bps) / 100).quantize(_CENT))
