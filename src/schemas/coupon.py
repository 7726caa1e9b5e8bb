"""Coupon-related Pydantic schemas."""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.schemas.cart import CartSnapshot
from src.schemas.common import CAMEL_CONFIG, Money


class CouponDefinition(BaseModel):
    """A validated coupon rule loaded from the coupons table.

    ``None`` caps mean "unlimited". Codes are stored upper-case.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str | None = None
    code: str = Field(min_length=1)
    description: str | None = None
    applicable_scope: Literal["all", "specificProducts", "productCategories"] = "all"
    policy: Literal["amountBased", "quantityBased"] = "amountBased"
    discount_type: Literal["percentage", "flat"]
    discount_value: Decimal = Field(gt=0)
    min_order_amount: Decimal | None = Field(default=None, ge=0)
    max_discount_amount: Decimal | None = Field(default=None, ge=0)
    min_quantity: int = Field(default=1, ge=1)
    max_word_count: int | None = Field(default=None, ge=1)
    usage_limit_per_user: int | None = Field(default=None, ge=0)
    total_usage_limit: int | None = Field(default=None, ge=0)
    used_count: int = Field(default=0, ge=0)
    specific_products: list[str] = Field(default_factory=list)
    product_categories: list[str] = Field(default_factory=list)
    status: Literal["Active", "Inactive"] = "Active"
    expires_at: datetime | None = None

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v: str) -> str:
        """Store and compare codes upper-case."""
        return v.strip().upper()

    @field_validator("discount_value", "min_order_amount", "max_discount_amount", mode="before")
    @classmethod
    def parse_money(cls, v: Any) -> Any:
        """Route float columns through str so 19.99 stays exact."""
        if isinstance(v, float):
            return str(v)
        return v

    @field_validator("max_discount_amount", mode="before")
    @classmethod
    def zero_cap_is_unlimited(cls, v: Any) -> Any:
        """A stored cap of 0 means no cap."""
        try:
            is_zero = v is not None and v != "" and Decimal(str(v)) == 0
        except InvalidOperation:
            # Not a number; field validation reports it
            return v
        return None if is_zero else v

    @field_validator("min_quantity", mode="before")
    @classmethod
    def default_min_quantity(cls, v: Any) -> Any:
        return 1 if v is None else v

    @field_validator("used_count", mode="before")
    @classmethod
    def default_used_count(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("expires_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        """Read naive timestamps as UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("specific_products", "product_categories", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """Treat NULL array columns as empty."""
        return v or []

    @model_validator(mode="after")
    def check_consistency(self) -> "CouponDefinition":
        """Check percentage bounds and scope/list agreement."""
        if self.discount_type == "percentage" and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")

        if (self.applicable_scope == "specificProducts") != bool(self.specific_products):
            raise ValueError("specific_products must be non-empty exactly when scope is specificProducts")

        if (self.applicable_scope == "productCategories") != bool(self.product_categories):
            raise ValueError("product_categories must be non-empty exactly when scope is productCategories")

        return self

    @property
    def is_full_item_discount(self) -> bool:
        """Check if this is the single-item 100%-off tier."""
        return self.discount_type == "percentage" and self.discount_value == 100


class CouponApplyRequest(BaseModel):
    """Request schema for previewing a coupon against a local cart."""

    model_config = CAMEL_CONFIG

    code: str | None = Field(default=None, description="Coupon code, omit to preview without a coupon")
    local_cart: CartSnapshot = Field(description="Cart as held by the storefront")


class CouponDetails(BaseModel):
    """Public summary of the rule that produced a discount."""

    model_config = CAMEL_CONFIG

    code: str
    applicable_scope: str
    policy: str
    discount_type: str
    discount_value: Money
    max_discount_amount: Money | None = None
    min_order_amount: Money | None = None
    min_quantity: int | None = None
    max_word_count: int | None = None
    specific_products: list[str] = Field(default_factory=list)
    product_categories: list[str] = Field(default_factory=list)

    @classmethod
    def from_coupon(cls, coupon: CouponDefinition) -> "CouponDetails":
        """Build details, reporting default floors of 1 as null."""
        min_order = coupon.min_order_amount
        return cls(
            code=coupon.code,
            applicable_scope=coupon.applicable_scope,
            policy=coupon.policy,
            discount_type=coupon.discount_type,
            discount_value=coupon.discount_value,
            max_discount_amount=coupon.max_discount_amount,
            min_order_amount=None if min_order is None or min_order == 1 else min_order,
            min_quantity=None if coupon.min_quantity == 1 else coupon.min_quantity,
            max_word_count=coupon.max_word_count,
            specific_products=coupon.specific_products,
            product_categories=coupon.product_categories,
        )


class CouponApplyResponse(BaseModel):
    """Response schema for a coupon preview."""

    model_config = CAMEL_CONFIG

    message: str = Field(description="Human-readable summary")
    original_total: Money = Field(description="Cart total before discount, USD")
    coupon_discount: Money = Field(description="Discount amount, USD")
    final_price: Money = Field(description="Cart total after discount, USD")
    applied_to: list[str] = Field(default_factory=list, description="Product ids the discount applies to")
    product_discounts: dict[str, Money] = Field(
        default_factory=dict, description="Per-product share of the discount"
    )
    coupon_details: CouponDetails | None = Field(default=None, description="Rule summary")
