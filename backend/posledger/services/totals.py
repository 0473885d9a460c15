from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from ..errors import ValidationError


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_rate: float
    tax_cents: int
    discount_cents: int
    total_cents: int


def compute_tax_cents(subtotal_cents: int, tax_rate: float) -> int:
    """Tax on a subtotal, rounded half-up to the cent."""
    amount = Decimal(subtotal_cents) * Decimal(str(tax_rate))
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_tax_rate(value, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ValidationError("tax_rate must be a number", details={"field": "tax_rate"})
    try:
        rate = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("tax_rate must be a number", details={"field": "tax_rate"})
    if not rate.is_finite() or rate < 0 or rate > 1:
        raise ValidationError("tax_rate must be between 0 and 1", details={"field": "tax_rate"})
    return float(rate)


def parse_quantity(value, *, field: str = "quantity") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be a positive integer", details={"field": field})
    if value < 1:
        raise ValidationError(f"{field} must be a positive integer", details={"field": field})
    return value


def parse_cents(value, *, field: str, allow_none: bool = False) -> int | None:
    """Non-negative integer amount in cents."""
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required", details={"field": field})
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer amount in cents", details={"field": field})
    if value < 0:
        raise ValidationError(f"{field} must not be negative", details={"field": field})
    return value


def compute_totals(
    line_totals_cents: Iterable[int],
    tax_rate: float,
    discount_cents: int = 0,
) -> Totals:
    """
    total = subtotal + tax - discount, all in cents.

    Rejects a discount larger than subtotal + tax so a total never goes
    negative.
    """
    subtotal = sum(line_totals_cents)
    tax = compute_tax_cents(subtotal, tax_rate)
    if discount_cents > subtotal + tax:
        raise ValidationError(
            "discount exceeds the amount due",
            details={"discount_cents": discount_cents, "amount_due_cents": subtotal + tax},
        )
    return Totals(
        subtotal_cents=subtotal,
        tax_rate=tax_rate,
        tax_cents=tax,
        discount_cents=discount_cents,
        total_cents=subtotal + tax - discount_cents,
    )
