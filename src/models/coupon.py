"""Coupon model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID


CouponScope = Literal["all", "specificProducts", "productCategories"]
CouponPolicy = Literal["amountBased", "quantityBased"]
DiscountType = Literal["percentage", "flat"]
CouponStatus = Literal["Active", "Inactive"]


class Coupon(TypedDict):
    """Coupon table row representation.

    Nullable caps (max_discount_amount, usage_limit_per_user,
    total_usage_limit) mean "unlimited".
    """

    id: UUID
    code: str
    description: str | None
    applicable_scope: CouponScope
    policy: CouponPolicy
    discount_type: DiscountType
    discount_value: float
    min_order_amount: float | None
    max_discount_amount: float | None
    min_quantity: int
    max_word_count: int | None
    usage_limit_per_user: int | None
    total_usage_limit: int | None
    used_count: int
    specific_products: list[str]
    product_categories: list[str]
    status: CouponStatus
    expires_at: datetime | None
    created_at: datetime
    updated_at: datetime


class CouponUsage(TypedDict):
    """coupon_usages table row: per-user consumption of one coupon.

    Unique on (coupon_id, user_id). Only written after a confirmed payment.
    """

    id: UUID
    coupon_id: UUID
    user_id: UUID
    usage_count: int
    created_at: datetime
    updated_at: datetime
