from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_coupon_validated(*, applied: bool) -> None:
    _inc("coupon_validations")
    _inc("coupon_applications" if applied else "coupon_rejections")


def record_coupons_resolved(*, requested: int, applied: int) -> None:
    _inc("coupon_resolutions")
    _inc("coupon_applications", applied)
    _inc("coupon_rejections", requested - applied)


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
