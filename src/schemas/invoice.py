"""Invoice Pydantic schemas for API responses."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from src.schemas.common import CAMEL_CONFIG, Money


class InvoiceResponse(BaseModel):
    """Schema for invoice API responses. Amounts are in USD."""

    model_config = CAMEL_CONFIG

    id: UUID = Field(description="Invoice unique identifier")
    invoice_number: str = Field(description="Invoice number, INV-<orderNumber>")
    order_id: UUID = Field(description="Invoiced order")
    user_id: UUID = Field(description="Billed user")
    customer_email: str | None = Field(default=None, description="Billing contact")
    total_amount: Money = Field(description="Total before discount")
    discount_amount: Money = Field(description="Discount granted")
    final_amount: Money = Field(description="Amount payable")
    status: str = Field(description="Unpaid, Paid, Overdue or Cancelled")
    issued_date: datetime = Field(description="Issue timestamp")
    due_date: datetime = Field(description="Payment due timestamp")
    payment_method: str = Field(description="Payment gateway")
    payment_session_id: str | None = Field(default=None, description="Gateway session at issue time")


class InvoiceListResponse(BaseModel):
    """Schema for invoice list API responses."""

    model_config = CAMEL_CONFIG

    items: list[InvoiceResponse] = Field(description="List of invoices")
