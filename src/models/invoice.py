"""Invoice model type definitions for database operations."""

from datetime import datetime
from typing import Literal, TypedDict
from uuid import UUID


InvoiceStatus = Literal["Unpaid", "Paid", "Overdue", "Cancelled"]
InvoicePaymentMethod = Literal["Stripe", "Razorpay", "Manual"]


class Invoice(TypedDict):
    """Invoice table row representation.

    Exactly one per order (unique on order_id). Status is derived from the
    order's payment status and only changed through status sync.
    """

    id: UUID
    invoice_number: str
    order_id: UUID
    user_id: UUID
    customer_email: str | None
    total_amount: float
    discount_amount: float
    final_amount: float
    status: InvoiceStatus
    issued_date: datetime
    due_date: datetime
    payment_method: InvoicePaymentMethod
    payment_session_id: str | None
    created_at: datetime
    updated_at: datetime
