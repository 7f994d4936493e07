from __future__ import annotations

from collections.abc import Iterable
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from coupon_engine.core import metrics
from coupon_engine.core.config import settings
from coupon_engine.core.dependencies import get_coupon_store
from coupon_engine.schemas.coupons import (
    ApplicableCouponRead,
    ApplicableCouponsRequest,
    Coupon,
    CouponResolutionRead,
    CouponResolveRequest,
    CouponResolveResponse,
    CouponSummaryRead,
    CouponValidateRequest,
    CouponValidateResponse,
    normalize_code,
)
from coupon_engine.services import coupons as coupons_service
from coupon_engine.services.coupon_store import CouponStore


router = APIRouter(prefix="/coupons", tags=["coupons"])

CouponStoreDep = Annotated[CouponStore, Depends(get_coupon_store)]


def _lookup_coupons(store: CouponStore, codes: Iterable[str]) -> dict[str, Coupon]:
    found: dict[str, Coupon] = {}
    for code in codes:
        coupon = store.get_by_code(code)
        if coupon is not None:
            found[normalize_code(code)] = coupon
    return found


def _used_by_user(user_usage: dict[str, int], code: str) -> int:
    for raw_code, count in user_usage.items():
        if normalize_code(raw_code) == code:
            return count
    return 0


def _reject(detail: str) -> HTTPException:
    metrics.record_coupon_validated(applied=False)
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _to_resolution_read(resolution: coupons_service.CouponResolution) -> CouponResolutionRead:
    result = resolution.result
    return CouponResolutionRead(
        code=resolution.code,
        applied=resolution.applied,
        discount=resolution.discount,
        reason=resolution.reason,
        applied_to_full_total=bool(result and resolution.applied and result.applied_to_full_total),
        product_ids=list(resolution.product_ids),
    )


@router.post("/validate")
def validate_coupon(payload: CouponValidateRequest, store: CouponStoreDep) -> CouponValidateResponse:
    coupon = store.get_by_code(payload.code)
    if coupon is None:
        metrics.record_coupon_validated(applied=False)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=coupons_service.MESSAGE_NOT_FOUND)
    if not coupon.is_valid():
        raise _reject(coupons_service.MESSAGE_NOT_VALID)
    if not coupon.can_be_used_by(payload.user_id, is_new_user=payload.is_new_user):
        raise _reject(coupons_service.MESSAGE_NOT_ELIGIBLE)
    if payload.user_id is not None and coupon.remaining_for_user(_used_by_user(payload.user_usage, coupon.code)) == 0:
        raise _reject(coupons_service.MESSAGE_USER_LIMIT)

    cart = payload.cart
    result = coupons_service.calculate_discount(
        coupon,
        cart.items,
        cart.total,
        cart_subtotal=cart.subtotal,
        shipping_cost=cart.shipping_cost,
        rounding=settings.money_rounding,
    )
    if not result.applied:
        raise _reject(result.status_message)

    metrics.record_coupon_validated(applied=True)
    return CouponValidateResponse(
        code=coupon.code,
        discount_type=coupon.discount_type,
        title=coupon.title,
        description=coupon.description,
        discount=result.discount_amount,
        applied_to_full_total=result.applied_to_full_total,
        applicable_items=result.eligible_count,
        eligible_subtotal=result.eligible_subtotal,
        message=result.status_message,
    )


@router.post("/resolve")
def resolve_coupons(payload: CouponResolveRequest, store: CouponStoreDep) -> CouponResolveResponse:
    if len(payload.codes) > settings.max_coupons_per_request:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many coupon codes (max {settings.max_coupons_per_request})",
        )

    summary = coupons_service.resolve_multiple(
        payload.codes,
        payload.cart,
        coupons=_lookup_coupons(store, payload.codes),
        user_id=payload.user_id,
        is_new_user=payload.is_new_user,
        exclude_already_applied=payload.exclude_already_applied,
        user_usage=payload.user_usage,
        order_by_priority=settings.coupon_priority_ordering,
        rounding=settings.money_rounding,
    )
    metrics.record_coupons_resolved(requested=summary.requested, applied=summary.applied)
    return CouponResolveResponse(
        results=[_to_resolution_read(resolution) for resolution in summary.results],
        applied_codes=[resolution.code for resolution in summary.applied_coupons],
        total_discount=summary.total_discount,
        requested=summary.requested,
        applied=summary.applied,
        products_discounted=summary.products_discounted,
    )


def _to_summary(coupon: Coupon) -> dict:
    return {
        "code": coupon.code,
        "discount_type": coupon.discount_type,
        "title": coupon.title,
        "description": coupon.description,
        "discount_percentage": getattr(coupon, "discount_percentage", None),
        "discount_amount": getattr(coupon, "discount_amount", None),
        "minimum_amount": coupon.minimum_amount,
        "ends_at": coupon.ends_at,
        "priority": coupon.priority,
    }


@router.get("/valid")
def list_valid_coupons(
    store: CouponStoreDep,
    user_id: str | None = None,
    is_new_user: bool | None = None,
) -> list[CouponSummaryRead]:
    coupons = coupons_service.valid_coupons(store.list_coupons(), user_id=user_id, is_new_user=is_new_user)
    return [CouponSummaryRead(**_to_summary(coupon)) for coupon in coupons]


@router.post("/applicable")
def list_applicable_coupons(payload: ApplicableCouponsRequest, store: CouponStoreDep) -> list[ApplicableCouponRead]:
    found = coupons_service.applicable_coupons(
        store.list_coupons(),
        payload.cart.items,
        user_id=payload.user_id,
        is_new_user=payload.is_new_user,
    )
    return [ApplicableCouponRead(**_to_summary(entry.coupon), applicable_items=entry.eligible_count) for entry in found]
