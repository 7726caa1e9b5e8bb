"""Order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from src.schemas.cart import CartLineItem
from src.schemas.common import CAMEL_CONFIG, Money


class CreateOrderRequest(BaseModel):
    """Schema for placing an order from the caller's cart via POST /orders."""

    model_config = CAMEL_CONFIG

    coupon_code: str | None = Field(default=None, description="Coupon to redeem")
    payment_method: Literal["Stripe"] = Field(default="Stripe", description="Payment gateway")
    ip: str | None = Field(default=None, description="Client IP, used to pick the settlement currency")


class OrderResponse(BaseModel):
    """Schema for order API responses. Amounts are in USD."""

    model_config = CAMEL_CONFIG

    id: UUID = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-readable order number")
    user_id: UUID = Field(description="Buyer")
    customer_email: str | None = Field(default=None, description="Buyer contact email")
    products: list[CartLineItem] = Field(default_factory=list, description="Frozen cart lines")
    total_quantity: int = Field(description="Units ordered")
    total_price: Money = Field(description="Total before discount")
    coupon_discount: Money = Field(default=Decimal("0"), description="Discount granted")
    final_price: Money = Field(description="Amount payable")
    coupon_id: UUID | None = Field(default=None, description="Redeemed coupon")
    coupon_code: str | None = Field(default=None, description="Redeemed coupon code")
    currency: str = Field(default="usd", description="Settlement currency")
    exchange_rate: Decimal = Field(default=Decimal("1"), description="USD to settlement currency rate")
    payment_method: str = Field(default="Stripe", description="Payment gateway")
    payment_session_id: str | None = Field(default=None, description="Current gateway session")
    payment_url: str | None = Field(default=None, description="Gateway checkout URL")
    payment_status: str = Field(description="Unpaid, Paid, Refunded or Failed")
    status: str = Field(description="Fulfilment status")
    invoice_number: str | None = Field(default=None, description="Invoice issued for this order")
    payment_date: datetime | None = Field(default=None, description="When payment was confirmed")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")


class CreateOrderResponse(BaseModel):
    """Schema for the order placement response.

    Free orders carry ``redirect_url`` to the confirmation page; paid orders
    carry the gateway ``session_id`` to redirect to.
    """

    model_config = CAMEL_CONFIG

    message: str = Field(default="Order created successfully.", description="Status message")
    order: OrderResponse = Field(description="The created order")
    redirect_url: str | None = Field(default=None, description="Confirmation page for free orders")
    session_id: str | None = Field(default=None, description="Gateway session for paid orders")


class OrderListResponse(BaseModel):
    """Schema for order list API responses."""

    model_config = CAMEL_CONFIG

    items: list[OrderResponse] = Field(description="List of orders")
