from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from coupon_engine.services import pricing


class CartLineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1)
    title: str = ""
    category: str | None = None
    brand: str | None = None
    product_type: str | None = None
    unit_price: Decimal = Field(default=Decimal("0.00"), ge=0)
    quantity: int = Field(default=0, ge=0)

    @field_validator("product_id", mode="before")
    @classmethod
    def _stringify_product_id(cls, value: object) -> object:
        if isinstance(value, (int, bytes)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("quantity", mode="before")
    @classmethod
    def _missing_quantity_is_zero(cls, value: object) -> object:
        return 0 if value is None else value

    @field_validator("unit_price", mode="before")
    @classmethod
    def _missing_price_is_zero(cls, value: object) -> object:
        return Decimal("0.00") if value is None else value

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class Cart(BaseModel):
    items: list[CartLineItem] = Field(default_factory=list)
    shipping_cost: Decimal = Field(default=Decimal("0.00"), ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subtotal(self) -> Decimal:
        return pricing.quantize_money(sum((item.line_total for item in self.items), start=Decimal("0.00")))

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> Decimal:
        return pricing.cart_total(subtotal=self.subtotal, shipping=self.shipping_cost)
