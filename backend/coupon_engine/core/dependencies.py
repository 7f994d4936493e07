from functools import lru_cache

from coupon_engine.core.config import settings
from coupon_engine.services.coupon_store import CouponStore, InMemoryCouponStore, load_coupons_file


@lru_cache
def _configured_store() -> InMemoryCouponStore:
    if not settings.coupons_file:
        return InMemoryCouponStore()
    return load_coupons_file(settings.coupons_file)


def get_coupon_store() -> CouponStore:
    return _configured_store()
