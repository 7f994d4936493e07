from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import Literal


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


def quantize_money(value: Decimal, *, rounding: MoneyRounding = "half_up") -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


def to_money(value: object) -> Decimal:
    """Coerce a loosely typed amount to Decimal; missing, garbage or non-finite values become 0."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return ZERO
    return amount if amount.is_finite() else ZERO


def non_negative(value: Decimal) -> Decimal:
    return value if value > 0 else ZERO


def format_amount(value: Decimal) -> str:
    """Render a threshold for user-facing messages: 50 -> "50", 49.5 -> "49.50"."""
    value = Decimal(value)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return str(quantize_money(value))


def percent_of(base: Decimal, percent: Decimal) -> Decimal:
    if base <= 0 or percent <= 0:
        return ZERO
    return base * percent / Decimal("100")


def cart_total(*, subtotal: Decimal, shipping: Decimal, rounding: MoneyRounding = "half_up") -> Decimal:
    return quantize_money(non_negative(subtotal) + non_negative(shipping), rounding=rounding)
