"""Order model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID

from src.models.cart import CartProduct


# Enum values matching the database enums
OrderStatus = Literal["Pending", "Processing", "Confirmed", "Completed", "Cancelled"]
PaymentStatus = Literal["Unpaid", "Paid", "Refunded", "Failed"]
PaymentMethod = Literal["Stripe", "Razorpay"]


class Order(TypedDict):
    """Order table row representation.

    ``products`` is the frozen cart snapshot taken at checkout. Payment
    matching is keyed on ``payment_session_id``; ``order_number`` is for
    display only. ``payment_settled`` turns true once a paid order's invoice,
    coupon usage and emails are done; ``coupon_usage_recorded`` guards the
    usage count.
    """

    id: UUID
    order_number: str
    user_id: UUID
    customer_email: str | None
    products: list[CartProduct]
    total_quantity: int
    total_price: float
    coupon_discount: float
    final_price: float
    coupon_id: UUID | None
    coupon_code: str | None
    currency: str
    exchange_rate: float
    payment_method: PaymentMethod
    payment_session_id: str | None
    payment_url: str | None
    payment_status: PaymentStatus
    status: OrderStatus
    invoice_number: str | None
    payment_date: datetime | None
    payment_settled: bool
    coupon_usage_recorded: bool
    created_at: datetime
    updated_at: datetime


class OrderCreate(TypedDict, total=False):
    """Data required to create a new order during checkout."""

    order_number: str
    user_id: str
    customer_email: str | None
    products: list[CartProduct]
    total_quantity: int
    total_price: float
    coupon_discount: float
    final_price: float
    coupon_id: str | None
    coupon_code: str | None
    currency: str
    exchange_rate: float
    payment_method: PaymentMethod
    payment_session_id: str | None
    payment_url: str | None
    payment_status: PaymentStatus
    status: OrderStatus
    payment_date: str | None
    payment_settled: bool
    coupon_usage_recorded: bool


class OrderUpdate(TypedDict, total=False):
    """Data the payment reconciler may write on an order."""

    payment_status: PaymentStatus
    payment_date: str
    payment_session_id: str
    payment_url: str
    invoice_number: str
    payment_settled: bool
    coupon_usage_recorded: bool
