from datetime import datetime, timedelta, timezone
from decimal import Decimal

from coupon_engine.schemas.cart import CartLineItem
from coupon_engine.schemas.coupons import ApplicableScope, CouponStatus, PercentageCoupon, UserRestrictions
from coupon_engine.services import coupons as coupons_service


NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _pct(code: str, **kwargs) -> PercentageCoupon:
    return PercentageCoupon(code=code, discount_percentage=Decimal("10"), **kwargs)


CATALOG = [
    _pct("FIRST"),
    _pct("TOP", priority=3),
    _pct("PAUSED", status=CouponStatus.inactive),
    _pct("LATER", starts_at=NOW + timedelta(days=2)),
    _pct("USEDUP", usage_limit=10, usage_count=10),
    _pct("MEMBERS", user_restrictions=UserRestrictions(allowed_users=frozenset({"u1"}))),
    _pct("TIRES", applicable_scope=ApplicableScope.category, applicable_categories={"tires"}),
    _pct("P9ONLY", applicable_scope=ApplicableScope.product, applicable_products={"p9"}),
]


def _codes(coupons) -> list[str]:
    return [coupon.code for coupon in coupons]


def test_valid_coupons_filters_and_orders_by_priority() -> None:
    assert _codes(coupons_service.valid_coupons(CATALOG, now=NOW)) == ["TOP", "FIRST", "TIRES", "P9ONLY"]
    assert "MEMBERS" in _codes(coupons_service.valid_coupons(CATALOG, user_id="u1", now=NOW))


def test_applicable_coupons_need_a_matching_item() -> None:
    cart = [CartLineItem(product_id="t1", category="tires", unit_price=Decimal("50.00"), quantity=1)]
    found = coupons_service.applicable_coupons(CATALOG, cart, now=NOW)
    assert [entry.coupon.code for entry in found] == ["TOP", "FIRST", "TIRES"]
    assert all(entry.eligible_count == 1 for entry in found)


def test_applicable_coupons_respect_exclusions() -> None:
    cart = [CartLineItem(product_id="p9", unit_price=Decimal("5.00"), quantity=1)]
    catalog = [_pct("ALLBUTP9", excluded_products={"p9"}), *CATALOG[-1:]]
    found = coupons_service.applicable_coupons(catalog, cart, now=NOW)
    assert [entry.coupon.code for entry in found] == ["P9ONLY"]
    assert coupons_service.applicable_coupons(catalog, [], now=NOW) == []
