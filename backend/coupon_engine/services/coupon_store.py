from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from coupon_engine.schemas.coupons import Coupon, normalize_code, parse_coupon


logger = logging.getLogger("coupon_engine.coupon_store")


class CouponStoreError(RuntimeError):
    pass


class CouponStore(Protocol):
    def get_by_code(self, code: str) -> Coupon | None: ...

    def list_coupons(self) -> list[Coupon]: ...


class InMemoryCouponStore:
    """Read-only coupon lookup keyed by normalised code."""

    def __init__(self, coupons: Iterable[Coupon] = ()) -> None:
        self._coupons: dict[str, Coupon] = {}
        for coupon in coupons:
            self.add(coupon)

    def add(self, coupon: Coupon) -> None:
        if coupon.code in self._coupons:
            raise CouponStoreError(f"Coupon code already exists: {coupon.code}")
        self._coupons[coupon.code] = coupon

    def get_by_code(self, code: str) -> Coupon | None:
        return self._coupons.get(normalize_code(code))

    def list_coupons(self) -> list[Coupon]:
        return list(self._coupons.values())

    def __len__(self) -> int:
        return len(self._coupons)


def _records(raw: Any) -> list[dict[str, Any]]:
    # Either a list of coupon records or an object keyed by code.
    if isinstance(raw, list):
        return [dict(record) for record in raw if isinstance(record, dict)]
    if isinstance(raw, dict):
        records: list[dict[str, Any]] = []
        for code, record in raw.items():
            if isinstance(record, dict):
                records.append({"code": code, **record})
        return records
    raise CouponStoreError("Coupons file must contain a list or an object keyed by code")


def load_coupons_file(path: str | Path) -> InMemoryCouponStore:
    file_path = Path(path)
    if not file_path.exists():
        logger.warning("coupons_file_missing", extra={"path": str(file_path)})
        return InMemoryCouponStore()

    try:
        raw = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CouponStoreError(f"Coupons file is not valid JSON: {file_path}") from exc

    coupons: list[Coupon] = []
    for record in _records(raw):
        try:
            coupons.append(parse_coupon(record))
        except ValidationError as exc:
            raise CouponStoreError(f"Invalid coupon definition {record.get('code')!r}: {exc}") from exc

    store = InMemoryCouponStore(coupons)
    logger.info("coupons_loaded", extra={"path": str(file_path), "count": len(store)})
    return store
