from decimal import Decimal

from coupon_engine.services import pricing


def test_quantize_money_rounding_modes() -> None:
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_even") == Decimal("1.00")
    assert pricing.quantize_money(Decimal("1.015"), rounding="half_even") == Decimal("1.02")
    assert pricing.quantize_money(Decimal("1.001"), rounding="up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.009"), rounding="down") == Decimal("1.00")


def test_to_money_treats_missing_and_garbage_as_zero() -> None:
    assert pricing.to_money(None) == Decimal("0.00")
    assert pricing.to_money("19.95") == Decimal("19.95")
    assert pricing.to_money(7) == Decimal("7")
    assert pricing.to_money("not-a-number") == Decimal("0.00")


def test_format_amount_drops_cents_for_whole_values() -> None:
    assert pricing.format_amount(Decimal("50")) == "50"
    assert pricing.format_amount(Decimal("50.00")) == "50"
    assert pricing.format_amount(Decimal("49.5")) == "49.50"


def test_percent_of_and_cart_total() -> None:
    assert pricing.percent_of(Decimal("100.00"), Decimal("10")) == Decimal("10")
    assert pricing.percent_of(Decimal("0.00"), Decimal("10")) == Decimal("0.00")
    assert pricing.percent_of(Decimal("100.00"), Decimal("0")) == Decimal("0.00")
    assert pricing.cart_total(subtotal=Decimal("89.999"), shipping=Decimal("10")) == Decimal("100.00")
    assert pricing.cart_total(subtotal=Decimal("20.00"), shipping=Decimal("-5.00")) == Decimal("20.00")


def test_to_money_treats_non_finite_values_as_zero() -> None:
    assert pricing.to_money("NaN") == Decimal("0.00")
    assert pricing.to_money(Decimal("Infinity")) == Decimal("0.00")
    assert pricing.to_money(float("-inf")) == Decimal("0.00")
