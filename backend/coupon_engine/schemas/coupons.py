from __future__ import annotations

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator

from coupon_engine.schemas.cart import Cart


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"
    buy_x_get_y = "buy_x_get_y"
    free_shipping = "free_shipping"


class ApplicableScope(str, enum.Enum):
    all = "all"
    product = "product"
    category = "category"
    brand = "brand"


class CouponStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    expired = "expired"
    exhausted = "exhausted"


# Fields that only one discount type may carry.
_TYPE_SPECIFIC_FIELDS: dict[str, tuple[str, ...]] = {
    DiscountType.percentage.value: ("discount_percentage",),
    DiscountType.fixed_amount.value: ("discount_amount",),
    DiscountType.buy_x_get_y.value: ("buy_quantity", "get_quantity"),
    DiscountType.free_shipping.value: (),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class UserRestrictions(BaseModel):
    model_config = ConfigDict(frozen=True)

    new_users_only: bool = False
    allowed_users: frozenset[str] = frozenset()
    excluded_users: frozenset[str] = frozenset()


class CouponBase(BaseModel):
    """Fields shared by every coupon variant.

    Instances are immutable: usage counters are read, never incremented, by the engine.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    code: str = Field(min_length=1, max_length=40)
    title: str = ""
    description: str = ""

    applicable_scope: ApplicableScope = ApplicableScope.all
    applicable_products: frozenset[str] = frozenset()
    applicable_categories: frozenset[str] = frozenset()
    applicable_brands: frozenset[str] = frozenset()
    excluded_products: frozenset[str] = frozenset()
    product_type: str | None = None

    minimum_amount: Decimal = Field(default=Decimal("0"), ge=0)
    maximum_amount: Decimal | None = Field(default=None, ge=0)
    apply_to_full_total: bool = True

    priority: int = 0
    stackable: bool = True

    status: CouponStatus = CouponStatus.active
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    usage_limit: int | None = Field(default=None, ge=1)
    usage_count: int = Field(default=0, ge=0)
    usage_limit_per_user: int | None = Field(default=None, ge=1)
    user_restrictions: UserRestrictions = Field(default_factory=UserRestrictions)

    @model_validator(mode="before")
    @classmethod
    def _reject_foreign_type_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        raw_type = data.get("discount_type")
        if raw_type is None:
            field = cls.model_fields.get("discount_type")
            raw_type = field.default if field is not None else ""
        discount_type = str(getattr(raw_type, "value", raw_type) or "")
        if "discount_type" in data:
            data = {**data, "discount_type": discount_type}
        own = set(_TYPE_SPECIFIC_FIELDS.get(discount_type, ()))
        for other_type, fields in _TYPE_SPECIFIC_FIELDS.items():
            if other_type == discount_type:
                continue
            for field in fields:
                if field not in own and data.get(field) is not None:
                    raise ValueError(f"{field} is not allowed for {discount_type or 'this'} coupons")
        return data

    @field_validator("code", mode="before")
    @classmethod
    def _normalize_code(cls, value: object) -> object:
        return normalize_code(value) if isinstance(value, str) else value

    @field_validator("applicable_products", "excluded_products", mode="before")
    @classmethod
    def _stringify_product_ids(cls, value: object) -> object:
        # Cart items accept integer product ids as strings; coupons must match them.
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(str(item) if isinstance(item, int) and not isinstance(item, bool) else item for item in value)
        return value

    @field_validator("minimum_amount", mode="before")
    @classmethod
    def _missing_minimum_is_zero(cls, value: object) -> object:
        return Decimal("0") if value is None else value

    @field_validator("starts_at", "ends_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_window(self) -> "CouponBase":
        if self.starts_at and self.ends_at and self.ends_at < self.starts_at:
            raise ValueError("ends_at must not be before starts_at")
        return self

    def validity_reasons(self, now: datetime | None = None) -> list[str]:
        now = now or _now()
        reasons: list[str] = []
        if self.status != CouponStatus.active:
            reasons.append(self.status.value)
        if self.starts_at and self.starts_at > now:
            reasons.append("not_started")
        if self.ends_at and self.ends_at < now:
            reasons.append("expired")
        if self.usage_limit is not None and self.usage_count >= self.usage_limit:
            reasons.append("exhausted")

        # Status and window can report the same thing (e.g. an "expired" status past its end date).
        seen: set[str] = set()
        deduped: list[str] = []
        for reason in reasons:
            if reason in seen:
                continue
            seen.add(reason)
            deduped.append(reason)
        return deduped

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.validity_reasons(now)

    def can_be_used_by(
        self,
        user_id: str | None,
        *,
        is_new_user: bool | None = None,
        now: datetime | None = None,
    ) -> bool:
        if not self.is_valid(now):
            return False
        restrictions = self.user_restrictions
        if user_id is not None and str(user_id) in restrictions.excluded_users:
            return False
        if restrictions.allowed_users:
            return user_id is not None and str(user_id) in restrictions.allowed_users
        if restrictions.new_users_only and is_new_user is False:
            return False
        return True

    def remaining_for_user(self, used: int) -> int | None:
        if self.usage_limit_per_user is None:
            return None
        return max(0, int(self.usage_limit_per_user) - int(used or 0))


class PercentageCoupon(CouponBase):
    discount_type: Literal["percentage"] = "percentage"
    discount_percentage: Decimal = Field(ge=0, le=100)


class FixedAmountCoupon(CouponBase):
    discount_type: Literal["fixed_amount"] = "fixed_amount"
    discount_amount: Decimal = Field(ge=0)


class BuyXGetYCoupon(CouponBase):
    discount_type: Literal["buy_x_get_y"] = "buy_x_get_y"
    buy_quantity: int = Field(ge=1)
    get_quantity: int = Field(ge=1)


class FreeShippingCoupon(CouponBase):
    discount_type: Literal["free_shipping"] = "free_shipping"


Coupon = Annotated[
    Union[PercentageCoupon, FixedAmountCoupon, BuyXGetYCoupon, FreeShippingCoupon],
    Field(discriminator="discount_type"),
]

coupon_adapter: TypeAdapter[Coupon] = TypeAdapter(Coupon)
coupon_list_adapter: TypeAdapter[list[Coupon]] = TypeAdapter(list[Coupon])


def parse_coupon(data: dict[str, Any]) -> Coupon:
    """Build a coupon variant from a raw record; records without a type are percentage coupons."""
    payload = dict(data)
    payload.setdefault("discount_type", DiscountType.percentage.value)
    return coupon_adapter.validate_python(payload)


class CouponValidateRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    cart: Cart
    user_id: str | None = None
    is_new_user: bool | None = None
    user_usage: dict[str, int] = Field(default_factory=dict)


class CouponValidateResponse(BaseModel):
    code: str
    discount_type: DiscountType
    title: str = ""
    description: str = ""
    discount: Decimal
    applied_to_full_total: bool
    applicable_items: int
    eligible_subtotal: Decimal
    message: str


class CouponResolveRequest(BaseModel):
    codes: list[str] = Field(min_length=1)
    cart: Cart
    user_id: str | None = None
    is_new_user: bool | None = None
    exclude_already_applied: list[str] = Field(default_factory=list)
    user_usage: dict[str, int] = Field(default_factory=dict)


class CouponResolutionRead(BaseModel):
    code: str
    applied: bool
    discount: Decimal = Decimal("0.00")
    reason: str
    applied_to_full_total: bool = False
    product_ids: list[str] = Field(default_factory=list)


class CouponResolveResponse(BaseModel):
    results: list[CouponResolutionRead] = Field(default_factory=list)
    applied_codes: list[str] = Field(default_factory=list)
    total_discount: Decimal = Decimal("0.00")
    requested: int = 0
    applied: int = 0
    products_discounted: int = 0


class CouponSummaryRead(BaseModel):
    code: str
    discount_type: DiscountType
    title: str = ""
    description: str = ""
    discount_percentage: Decimal | None = None
    discount_amount: Decimal | None = None
    minimum_amount: Decimal = Decimal("0")
    ends_at: datetime | None = None
    priority: int = 0


class ApplicableCouponsRequest(BaseModel):
    cart: Cart
    user_id: str | None = None
    is_new_user: bool | None = None


class ApplicableCouponRead(CouponSummaryRead):
    applicable_items: int = 0
