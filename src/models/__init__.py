"""Database model type definitions."""

from src.models.cart import Cart, CartProduct
from src.models.coupon import Coupon, CouponUsage
from src.models.invoice import Invoice, InvoiceStatus
from src.models.order import Order, OrderStatus, PaymentStatus

__all__ = [
    "Cart",
    "CartProduct",
    "Coupon",
    "CouponUsage",
    "Invoice",
    "InvoiceStatus",
    "Order",
    "OrderStatus",
    "PaymentStatus",
]
