from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from coupon_engine.schemas.cart import Cart, CartLineItem
from coupon_engine.schemas.coupons import ApplicableScope, Coupon, DiscountType, normalize_code
from coupon_engine.services import pricing


logger = logging.getLogger("coupon_engine.coupons")

ZERO = pricing.ZERO

MESSAGE_APPLIED = "Coupon applied successfully"
MESSAGE_NO_ITEMS = "No applicable items in cart"
MESSAGE_ALL_CLAIMED = "All applicable items already claimed"
MESSAGE_SHIPPING_FREE = "Shipping is already free"
MESSAGE_NO_SAVINGS = "Coupon does not reduce this order"
MESSAGE_NOT_FOUND = "Invalid coupon code"
MESSAGE_NOT_VALID = "Coupon is expired or not available"
MESSAGE_NOT_ELIGIBLE = "You are not eligible to use this coupon"
MESSAGE_USER_LIMIT = "You have reached the usage limit for this coupon"
MESSAGE_NOT_STACKABLE = "Coupon cannot be combined with other coupons"
MESSAGE_DUPLICATE = "Coupon code already submitted"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _quantity(item: CartLineItem) -> int:
    quantity = int(getattr(item, "quantity", 0) or 0)
    return quantity if quantity > 0 else 0


def _unit_price(item: CartLineItem) -> Decimal:
    return pricing.non_negative(pricing.to_money(getattr(item, "unit_price", None)))


def _line_total(item: CartLineItem) -> Decimal:
    return _unit_price(item) * _quantity(item)


def items_subtotal(items: Iterable[CartLineItem]) -> Decimal:
    return sum((_line_total(item) for item in items), start=Decimal("0.00"))


@dataclass(frozen=True)
class DiscountResult:
    discount_amount: Decimal
    applied_to_full_total: bool
    eligible_items: tuple[CartLineItem, ...]
    eligible_subtotal: Decimal
    status_message: str

    @property
    def applied(self) -> bool:
        return self.discount_amount > 0

    @property
    def eligible_count(self) -> int:
        return len(self.eligible_items)


def _zero_result(message: str) -> DiscountResult:
    return DiscountResult(
        discount_amount=Decimal("0.00"),
        applied_to_full_total=False,
        eligible_items=(),
        eligible_subtotal=Decimal("0.00"),
        status_message=message,
    )


# Eligibility


def _is_excluded(coupon: Coupon, item: CartLineItem) -> bool:
    return item.product_id in coupon.excluded_products


def _matches_category(coupon: Coupon, item: CartLineItem) -> bool:
    if item.category is not None and item.category in coupon.applicable_categories:
        return True
    return coupon.product_type is not None and item.product_type == coupon.product_type


def _matches_scope(coupon: Coupon, item: CartLineItem) -> bool:
    scope = coupon.applicable_scope
    if scope == ApplicableScope.all:
        return True
    if scope == ApplicableScope.product:
        return item.product_id in coupon.applicable_products
    if scope == ApplicableScope.category:
        return _matches_category(coupon, item)
    if scope == ApplicableScope.brand:
        return item.brand is not None and item.brand in coupon.applicable_brands
    return False


def _eligible_items(coupon: Coupon, cart_items: Iterable[CartLineItem]) -> list[CartLineItem]:
    # Exclusion is checked first and wins over every inclusion rule.
    return [item for item in cart_items if not _is_excluded(coupon, item) and _matches_scope(coupon, item)]


def filter_eligible(coupon: Coupon, cart_items: Iterable[CartLineItem]) -> list[CartLineItem]:
    """Return the cart items the coupon's scope covers, in cart order."""
    eligible = _eligible_items(coupon, cart_items)
    logger.debug(
        "coupon_eligibility",
        extra={"coupon_code": coupon.code, "scope": coupon.applicable_scope.value, "eligible_items": len(eligible)},
    )
    return eligible


# Discount calculation


def _applies_to_full_total(coupon: Coupon) -> bool:
    return coupon.applicable_scope == ApplicableScope.all and coupon.apply_to_full_total


def _threshold_message(coupon: Coupon, base_amount: Decimal) -> str | None:
    if base_amount < coupon.minimum_amount:
        return f"Minimum order amount of ${pricing.format_amount(coupon.minimum_amount)} required"
    maximum = coupon.maximum_amount
    if maximum and base_amount > maximum:
        return f"Maximum order amount of ${pricing.format_amount(maximum)} exceeded"
    return None


def _percentage_discount(coupon: Coupon, *, eligible_subtotal: Decimal, full_total: Decimal) -> tuple[Decimal, bool]:
    pct = Decimal(coupon.discount_percentage)
    if _applies_to_full_total(coupon):
        return pricing.percent_of(full_total, pct), True
    return pricing.percent_of(eligible_subtotal, pct), False


def _fixed_amount_discount(coupon: Coupon, *, eligible_subtotal: Decimal, full_total: Decimal) -> tuple[Decimal, bool]:
    amount = Decimal(coupon.discount_amount)
    if _applies_to_full_total(coupon):
        return min(amount, pricing.non_negative(full_total)), True
    return min(amount, eligible_subtotal), False


def _buy_x_get_y_discount(coupon: Coupon, items: Sequence[CartLineItem]) -> Decimal:
    total_quantity = sum(_quantity(item) for item in items)
    free_units = (total_quantity // int(coupon.buy_quantity)) * int(coupon.get_quantity)

    discount = Decimal("0.00")
    remaining = free_units
    for item in sorted(items, key=_unit_price):
        if remaining <= 0:
            break
        free_here = min(_quantity(item), remaining)
        discount += _unit_price(item) * free_here
        remaining -= free_here
    return discount


def _discount_for_type(
    coupon: Coupon,
    items: Sequence[CartLineItem],
    *,
    eligible_subtotal: Decimal,
    full_total: Decimal,
    shipping_cost: Decimal,
) -> tuple[Decimal, bool]:
    if coupon.discount_type == DiscountType.percentage:
        return _percentage_discount(coupon, eligible_subtotal=eligible_subtotal, full_total=full_total)
    if coupon.discount_type == DiscountType.fixed_amount:
        return _fixed_amount_discount(coupon, eligible_subtotal=eligible_subtotal, full_total=full_total)
    if coupon.discount_type == DiscountType.buy_x_get_y:
        return _buy_x_get_y_discount(coupon, items), False
    if coupon.discount_type == DiscountType.free_shipping:
        return shipping_cost, False
    return Decimal("0.00"), False


def _zero_discount_message(coupon: Coupon, *, shipping_cost: Decimal) -> str:
    if coupon.discount_type == DiscountType.free_shipping and shipping_cost <= 0:
        return MESSAGE_SHIPPING_FREE
    if coupon.discount_type == DiscountType.buy_x_get_y:
        return f"Buy {coupon.buy_quantity} eligible items to get {coupon.get_quantity} free"
    return MESSAGE_NO_SAVINGS


def _evaluate(
    coupon: Coupon,
    cart_items: Iterable[CartLineItem],
    *,
    limit_amount: Decimal,
    full_total: Decimal,
    shipping_cost: Decimal,
    rounding: pricing.MoneyRounding,
) -> DiscountResult:
    threshold = _threshold_message(coupon, limit_amount)
    if threshold is not None:
        return _zero_result(threshold)

    eligible = _eligible_items(coupon, cart_items)
    if not eligible:
        return _zero_result(MESSAGE_NO_ITEMS)

    eligible_subtotal = items_subtotal(eligible)
    amount, full = _discount_for_type(
        coupon,
        eligible,
        eligible_subtotal=eligible_subtotal,
        full_total=full_total,
        shipping_cost=shipping_cost,
    )
    discount = pricing.quantize_money(pricing.non_negative(amount), rounding=rounding)
    message = MESSAGE_APPLIED if discount > 0 else _zero_discount_message(coupon, shipping_cost=shipping_cost)
    return DiscountResult(
        discount_amount=discount,
        applied_to_full_total=full,
        eligible_items=tuple(eligible),
        eligible_subtotal=pricing.quantize_money(eligible_subtotal, rounding=rounding),
        status_message=message,
    )


def calculate_discount(
    coupon: Coupon,
    cart_items: Iterable[CartLineItem],
    cart_total: Decimal,
    *,
    cart_subtotal: Decimal | None = None,
    shipping_cost: Decimal | None = None,
    rounding: pricing.MoneyRounding = "half_up",
) -> DiscountResult:
    """Compute one coupon's discount for a cart.

    The caller is expected to have checked ``coupon.is_valid()``; only the order
    amount thresholds are enforced here. ``cart_total`` includes shipping,
    ``cart_subtotal`` (defaulting to ``cart_total``) does not.
    """
    total = pricing.to_money(cart_total)
    subtotal = total if cart_subtotal is None else pricing.to_money(cart_subtotal)
    shipping = pricing.non_negative(pricing.to_money(shipping_cost))
    limit_amount = total if coupon.apply_to_full_total else subtotal

    result = _evaluate(
        coupon,
        cart_items,
        limit_amount=limit_amount,
        full_total=total,
        shipping_cost=shipping,
        rounding=rounding,
    )
    logger.info(
        "coupon_calculated",
        extra={
            "coupon_code": coupon.code,
            "discount_type": coupon.discount_type,
            "discount_amount": str(result.discount_amount),
            "eligible_items": result.eligible_count,
            "status_message": result.status_message,
        },
    )
    return result


# Coupon listings


def _by_priority(coupons: Iterable[Coupon]) -> list[Coupon]:
    return sorted(coupons, key=lambda coupon: -coupon.priority)


def valid_coupons(
    coupons: Iterable[Coupon],
    *,
    user_id: str | None = None,
    is_new_user: bool | None = None,
    now: datetime | None = None,
) -> list[Coupon]:
    """Coupons the user could redeem right now, highest priority first."""
    now = now or _now()
    return _by_priority(
        coupon for coupon in coupons if coupon.can_be_used_by(user_id, is_new_user=is_new_user, now=now)
    )


@dataclass(frozen=True)
class ApplicableCoupon:
    coupon: Coupon
    eligible_items: tuple[CartLineItem, ...]

    @property
    def eligible_count(self) -> int:
        return len(self.eligible_items)


def applicable_coupons(
    coupons: Iterable[Coupon],
    cart_items: Sequence[CartLineItem],
    *,
    user_id: str | None = None,
    is_new_user: bool | None = None,
    now: datetime | None = None,
) -> list[ApplicableCoupon]:
    """Valid coupons whose scope covers at least one item of the cart.

    Order thresholds are not checked; a listed coupon may still yield no discount.
    """
    found: list[ApplicableCoupon] = []
    for coupon in valid_coupons(coupons, user_id=user_id, is_new_user=is_new_user, now=now):
        eligible = _eligible_items(coupon, cart_items)
        if eligible:
            found.append(ApplicableCoupon(coupon=coupon, eligible_items=tuple(eligible)))
    logger.info("applicable_coupons", extra={"cart_items": len(cart_items), "coupons": len(found)})
    return found


# Multi-coupon resolution


@dataclass(frozen=True)
class CouponResolution:
    code: str
    applied: bool
    discount: Decimal
    reason: str
    coupon: Coupon | None = None
    result: DiscountResult | None = None

    @property
    def product_ids(self) -> tuple[str, ...]:
        if not self.applied or self.result is None:
            return ()
        return tuple(item.product_id for item in self.result.eligible_items)


@dataclass(frozen=True)
class ResolutionSummary:
    results: tuple[CouponResolution, ...]
    total_discount: Decimal
    requested: int

    @property
    def applied_coupons(self) -> tuple[CouponResolution, ...]:
        return tuple(result for result in self.results if result.applied)

    @property
    def applied(self) -> int:
        return len(self.applied_coupons)

    @property
    def products_discounted(self) -> int:
        product_ids: set[str] = set()
        for result in self.applied_coupons:
            product_ids.update(result.product_ids)
        return len(product_ids)


@dataclass(frozen=True)
class _QueuedCode:
    code: str
    coupon: Coupon | None
    duplicate: bool = False


def _resolution_queue(
    codes: Iterable[str],
    coupons: Mapping[str, Coupon],
    *,
    skip: set[str],
    order_by_priority: bool,
) -> list[_QueuedCode]:
    queue: list[_QueuedCode] = []
    seen: set[str] = set()
    for raw in codes:
        code = normalize_code(raw)
        if not code or code in skip:
            continue
        queue.append(_QueuedCode(code=code, coupon=coupons.get(code), duplicate=code in seen))
        seen.add(code)
    if order_by_priority:
        # sorted() is stable: equal priorities keep the caller's order.
        queue = sorted(queue, key=lambda entry: -(entry.coupon.priority if entry.coupon is not None else 0))
    return queue


def _rejection_reason(
    entry: _QueuedCode,
    *,
    user_id: str | None,
    is_new_user: bool | None,
    user_usage: Mapping[str, int],
    now: datetime,
    stacking_blocked: bool,
) -> str | None:
    coupon = entry.coupon
    if entry.duplicate:
        return MESSAGE_DUPLICATE
    if coupon is None:
        return MESSAGE_NOT_FOUND
    if not coupon.is_valid(now):
        return MESSAGE_NOT_VALID
    if not coupon.can_be_used_by(user_id, is_new_user=is_new_user, now=now):
        return MESSAGE_NOT_ELIGIBLE
    if user_id is not None and coupon.remaining_for_user(user_usage.get(coupon.code, 0)) == 0:
        return MESSAGE_USER_LIMIT
    if stacking_blocked:
        return MESSAGE_NOT_STACKABLE
    return None


def resolve_multiple(
    codes: Sequence[str],
    cart: Cart,
    *,
    coupons: Mapping[str, Coupon],
    user_id: str | None = None,
    is_new_user: bool | None = None,
    user_usage: Mapping[str, int] | None = None,
    exclude_already_applied: Iterable[str] = (),
    now: datetime | None = None,
    order_by_priority: bool = True,
    rounding: pricing.MoneyRounding = "half_up",
) -> ResolutionSummary:
    """Apply several coupon codes to one cart without discounting any product twice.

    ``coupons`` maps codes to the definitions the caller looked up; a code
    missing from it is reported as invalid. Shipping is claimed like a line
    item: once a coupon has discounted it, later coupons see no shipping. A
    full-total coupon is priced on its own unclaimed items plus unclaimed
    shipping, so products it excludes stay at full price for later coupons.
    """
    now = now or _now()
    lookup = {normalize_code(code): coupon for code, coupon in coupons.items()}
    usage = {normalize_code(code): int(count or 0) for code, count in (user_usage or {}).items()}
    skip = {normalize_code(code) for code in exclude_already_applied}
    queue = _resolution_queue(codes, lookup, skip=skip, order_by_priority=order_by_priority)

    limit_total = cart.total
    limit_subtotal = cart.subtotal
    claimed_product_ids: set[str] = set()
    shipping_claimed = False
    exclusive_applied = False
    applied_count = 0
    total = Decimal("0.00")
    results: list[CouponResolution] = []

    for entry in queue:
        coupon = entry.coupon
        stacking_blocked = applied_count > 0 and (exclusive_applied or (coupon is not None and not coupon.stackable))
        reason = _rejection_reason(
            entry,
            user_id=user_id,
            is_new_user=is_new_user,
            user_usage=usage,
            now=now,
            stacking_blocked=stacking_blocked,
        )
        if reason is not None or coupon is None:
            results.append(
                CouponResolution(code=entry.code, applied=False, discount=ZERO, reason=reason or MESSAGE_NOT_FOUND, coupon=coupon)
            )
            continue

        matched = _eligible_items(coupon, cart.items)
        remaining = [item for item in matched if item.product_id not in claimed_product_ids]
        if not remaining:
            reason = MESSAGE_ALL_CLAIMED if matched else MESSAGE_NO_ITEMS
            results.append(CouponResolution(code=entry.code, applied=False, discount=ZERO, reason=reason, coupon=coupon))
            continue

        shipping = ZERO if shipping_claimed else pricing.non_negative(cart.shipping_cost)
        result = _evaluate(
            coupon,
            remaining,
            limit_amount=limit_total if coupon.apply_to_full_total else limit_subtotal,
            full_total=items_subtotal(remaining) + shipping,
            shipping_cost=shipping,
            rounding=rounding,
        )
        if not result.applied:
            results.append(
                CouponResolution(
                    code=entry.code, applied=False, discount=ZERO, reason=result.status_message, coupon=coupon, result=result
                )
            )
            continue

        claimed_product_ids.update(item.product_id for item in result.eligible_items)
        if result.applied_to_full_total or coupon.discount_type == DiscountType.free_shipping:
            shipping_claimed = True
        if not coupon.stackable:
            exclusive_applied = True
        applied_count += 1
        total += result.discount_amount
        results.append(
            CouponResolution(
                code=entry.code,
                applied=True,
                discount=result.discount_amount,
                reason=result.status_message,
                coupon=coupon,
                result=result,
            )
        )

    summary = ResolutionSummary(
        results=tuple(results),
        total_discount=pricing.quantize_money(total, rounding=rounding),
        requested=len(queue),
    )
    logger.info(
        "coupons_resolved",
        extra={
            "requested": summary.requested,
            "applied": summary.applied,
            "products_discounted": summary.products_discounted,
            "total_discount": str(summary.total_discount),
        },
    )
    return summary
