from collections.abc import Generator
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from coupon_engine.core import metrics
from coupon_engine.core.dependencies import get_coupon_store
from coupon_engine.main import app
from coupon_engine.schemas.coupons import (
    ApplicableScope,
    FixedAmountCoupon,
    FreeShippingCoupon,
    PercentageCoupon,
    UserRestrictions,
)
from coupon_engine.services.coupon_store import InMemoryCouponStore


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def coupon_store() -> InMemoryCouponStore:
    return InMemoryCouponStore(
        [
            PercentageCoupon(
                code="TIRES10",
                title="10% off tires",
                discount_percentage=Decimal("10"),
                applicable_scope=ApplicableScope.category,
                applicable_categories={"tires"},
                apply_to_full_total=False,
            ),
            FixedAmountCoupon(
                code="ACME50",
                discount_amount=Decimal("50"),
                applicable_scope=ApplicableScope.brand,
                applicable_brands={"acme"},
                apply_to_full_total=False,
            ),
            FreeShippingCoupon(code="SHIPFREE"),
            PercentageCoupon(
                code="OLD",
                discount_percentage=Decimal("10"),
                ends_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
            ),
            PercentageCoupon(
                code="VIP",
                discount_percentage=Decimal("10"),
                user_restrictions=UserRestrictions(allowed_users=frozenset({"vip-user"})),
            ),
            PercentageCoupon(
                code="ONCE",
                discount_percentage=Decimal("5"),
                applicable_scope=ApplicableScope.category,
                applicable_categories={"tires"},
                apply_to_full_total=False,
                usage_limit_per_user=1,
                priority=1,
            ),
        ]
    )


@pytest.fixture
def client(coupon_store: InMemoryCouponStore) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_coupon_store] = lambda: coupon_store
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def cart_payload() -> dict:
    return {
        "items": [
            {"product_id": "t1", "title": "Tire", "category": "tires", "brand": "acme", "unit_price": "100.00", "quantity": 1},
            {"product_id": "o1", "title": "Oil", "category": "oil", "brand": "acme", "unit_price": "20.00", "quantity": 1},
        ],
        "shipping_cost": "10.00",
    }
