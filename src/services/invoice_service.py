"""Invoice issuance, status sync and PDF rendering service."""

import logging
from datetime import datetime, timedelta, timezone
from html import escape
from io import BytesIO
from typing import Any
from uuid import UUID

import fitz  # PyMuPDF
from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.error_handler import ConflictError, NotFoundError
from src.core.config import get_settings
from src.core.money import round_money
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.invoice import Invoice, InvoiceStatus
from src.models.order import Order, PaymentStatus
from src.services.email_service import EmailService
from src.services.notification_dispatcher import get_notification_dispatcher

logger = logging.getLogger(__name__)

# Invoice status derived from the order's payment status
PAYMENT_TO_INVOICE_STATUS: dict[PaymentStatus, InvoiceStatus] = {
    "Paid": "Paid",
    "Unpaid": "Unpaid",
    "Failed": "Unpaid",
    "Refunded": "Cancelled",
}

STATUS_COLORS = {
    "Paid": "#22c55e",
    "Unpaid": "#eab308",
    "Overdue": "#ef4444",
    "Cancelled": "#6b7280",
}

INVOICE_CSS = """
body { font-family: sans-serif; font-size: 10pt; color: #111827; }
h1 { font-size: 18pt; margin: 0; }
.muted { color: #6b7280; }
.badge { color: #ffffff; font-weight: bold; padding: 4px; }
table { width: 100%; border-collapse: collapse; }
th { text-align: left; border-bottom: 1px solid #9ca3af; padding: 4px; }
td { border-bottom: 1px solid #e5e7eb; padding: 4px; }
.right { text-align: right; }
.total { font-weight: bold; font-size: 12pt; }
"""


def invoice_number_for(order_number: str) -> str:
    """Derive the invoice number from an order number."""
    return f"INV-{order_number}"


def invoice_status_for(payment_status: str) -> InvoiceStatus:
    """Map an order payment status to an invoice status."""
    return PAYMENT_TO_INVOICE_STATUS.get(payment_status, "Unpaid")


def _format_date(value: Any) -> str:
    if not value:
        return ""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return value.strftime("%d %b %Y")


class InvoiceService:
    """Service owning the one-invoice-per-order records."""

    def __init__(self) -> None:
        """Initialize invoice service with clients."""
        self.client = get_supabase_client()
        self.settings = get_settings()

    async def issue(self, order_id: UUID | str, payment_method: str = "Stripe") -> Invoice:
        """Create the invoice for an order.

        The invoice copies the order's amounts, is due ``invoice_due_days``
        after issue and is Paid only if the order already is.

        Args:
            order_id: The order's UUID.
            payment_method: How the order is being paid.

        Returns:
            dict: The created invoice row.

        Raises:
            NotFoundError: If the order does not exist.
            ConflictError: If the order already has an invoice.
        """
        order_response = (
            self.client.table("orders")
            .select("*")
            .eq("id", str(order_id))
            .maybe_single()
            .execute()
        )
        if not order_response or not order_response.data:
            raise NotFoundError("Order not found")
        order: Order = order_response.data

        if await self.get_for_order(order_id):
            raise ConflictError(f"Invoice already exists for order {order['order_number']}")

        issued = datetime.now(timezone.utc)
        invoice_data = {
            "invoice_number": invoice_number_for(order["order_number"]),
            "order_id": str(order_id),
            "user_id": order["user_id"],
            "customer_email": order.get("customer_email"),
            "total_amount": order["total_price"],
            "discount_amount": order.get("coupon_discount") or 0,
            "final_amount": order["final_price"],
            "status": "Paid" if order["payment_status"] == "Paid" else "Unpaid",
            "issued_date": issued.isoformat(),
            "due_date": (issued + timedelta(days=self.settings.invoice_due_days)).isoformat(),
            "payment_method": payment_method,
            "payment_session_id": order.get("payment_session_id"),
        }

        try:
            response = self.client.table("invoices").insert(invoice_data).execute()
        except PostgrestAPIError as e:
            if is_unique_violation(e):
                raise ConflictError(f"Invoice already exists for order {order['order_number']}") from e
            raise
        invoice: Invoice = response.data[0]

        self.client.table("orders").update(
            {"invoice_number": invoice["invoice_number"]}
        ).eq("id", str(order_id)).execute()

        logger.info("Issued invoice %s for order %s", invoice["invoice_number"], order_id)

        email_service = EmailService()
        dispatcher = get_notification_dispatcher()
        dispatcher.submit(
            f"invoice_generated:{invoice['invoice_number']}",
            lambda: email_service.send_invoice_generated_email(invoice),
        )
        dispatcher.submit(
            f"admin_new_invoice:{invoice['invoice_number']}",
            lambda: email_service.send_admin_new_invoice_email(invoice),
        )

        return invoice

    async def sync_status(self, order_id: UUID | str, payment_status: str) -> Invoice | None:
        """Align an invoice's status with its order's payment status.

        Args:
            order_id: The order's UUID.
            payment_status: The order's current payment status.

        Returns:
            dict | None: The updated invoice, or None if the order has none.
        """
        status = invoice_status_for(payment_status)
        response = (
            self.client.table("invoices")
            .update({"status": status})
            .eq("order_id", str(order_id))
            .execute()
        )

        if not response.data:
            logger.warning("No invoice to sync for order %s", order_id)
            return None

        logger.info("Invoice for order %s set to %s", order_id, status)
        return response.data[0]

    async def delete_for_order(self, order_id: UUID | str) -> None:
        """Delete the invoice of a deleted order.

        Args:
            order_id: The order's UUID.
        """
        self.client.table("invoices").delete().eq("order_id", str(order_id)).execute()
        logger.info("Deleted invoice for order %s", order_id)

    async def get_for_order(self, order_id: UUID | str) -> Invoice | None:
        """Get the invoice of an order.

        Args:
            order_id: The order's UUID.

        Returns:
            dict | None: The invoice or None if not issued.
        """
        response = (
            self.client.table("invoices")
            .select("*")
            .eq("order_id", str(order_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def list_for_user(self, user_id: UUID | str) -> list[Invoice]:
        """Get a user's invoices, newest first.

        Args:
            user_id: The owner's UUID.

        Returns:
            list[Invoice]: Invoice rows.
        """
        response = (
            self.client.table("invoices")
            .select("*")
            .eq("user_id", str(user_id))
            .order("created_at", desc=True)
            .execute()
        )
        return response.data or []

    async def get_for_user(self, user_id: UUID | str, invoice_number: str) -> Invoice:
        """Get one of a user's invoices by number.

        Numbers can repeat for orders placed in the same minute; the newest
        invoice wins.

        Args:
            user_id: The owner's UUID.
            invoice_number: e.g. "INV-0101251200".

        Returns:
            dict: The invoice row.

        Raises:
            NotFoundError: If the user has no such invoice.
        """
        response = (
            self.client.table("invoices")
            .select("*")
            .eq("user_id", str(user_id))
            .eq("invoice_number", invoice_number)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        if not response.data:
            raise NotFoundError("Invoice not found")
        return response.data[0]

    async def render_pdf_for_user(self, user_id: UUID | str, invoice_number: str) -> bytes:
        """Load a user's invoice with its order and render it as PDF.

        Raises:
            NotFoundError: If the user has no such invoice.
        """
        invoice = await self.get_for_user(user_id, invoice_number)
        order_response = (
            self.client.table("orders")
            .select("*")
            .eq("id", str(invoice["order_id"]))
            .maybe_single()
            .execute()
        )
        order = order_response.data if order_response and order_response.data else {}
        return self.render_pdf(invoice, order)

    def build_html(self, invoice: Invoice, order: Order) -> str:
        """Build the invoice document as HTML."""
        status = str(invoice.get("status", ""))
        color = STATUS_COLORS.get(status, "#3b82f6")

        rows = []
        for index, item in enumerate(order.get("products") or [], start=1):
            word_count = item.get("word_count")
            rows.append(
                "<tr>"
                f"<td>{index}</td>"
                f"<td>{escape(str(item.get('product_name') or item.get('product_id', '')))}</td>"
                f"<td class=\"right\">${round_money(item.get('unit_price'))}</td>"
                f"<td class=\"right\">{item.get('quantity', 1)}</td>"
                f"<td class=\"right\">{word_count if word_count is not None else '-'}</td>"
                f"<td class=\"right\">${round_money(item.get('line_total'))}</td>"
                "</tr>"
            )

        company = escape(self.settings.company_name)
        bill_to = escape(str(invoice.get("customer_email") or "N/A"))
        return f"""
<html>
<body>
<table>
  <tr>
    <td><h1>{company}</h1></td>
    <td class="right">
      <span class="badge" style="background-color: {color};">{escape(status)}</span>
      <p><b>{escape(invoice['invoice_number'])}</b></p>
      <p class="muted">Invoice Number</p>
    </td>
  </tr>
</table>
<table>
  <tr>
    <td>
      <p><b>From</b></p>
      <p>{company}</p>
      <p><b>Issue Date</b></p>
      <p>{_format_date(invoice.get('issued_date'))}</p>
    </td>
    <td>
      <p><b>Bill To</b></p>
      <p>{bill_to}</p>
      <p><b>Due Date</b></p>
      <p>{_format_date(invoice.get('due_date'))}</p>
    </td>
  </tr>
</table>
<p></p>
<table>
  <tr>
    <th>#</th><th>Item</th><th class="right">Unit Price</th><th class="right">Quantity</th>
    <th class="right">Word Count</th><th class="right">Total Price</th>
  </tr>
  {''.join(rows)}
</table>
<p></p>
<table>
  <tr><td>Subtotal</td><td class="right">${round_money(invoice.get('total_amount'))}</td></tr>
  <tr><td>Discount</td><td class="right">${round_money(invoice.get('discount_amount'))}</td></tr>
  <tr><td class="total">Total</td><td class="right total">${round_money(invoice.get('final_amount'))}</td></tr>
</table>
<p class="muted">We appreciate your business, and hope to be working with you again very soon!</p>
</body>
</html>
"""

    def render_pdf(self, invoice: Invoice, order: Order) -> bytes:
        """Render an invoice to A4 PDF bytes.

        Args:
            invoice: Invoice row.
            order: The invoiced order, for its line items.

        Returns:
            bytes: PDF document.
        """
        story = fitz.Story(html=self.build_html(invoice, order), user_css=INVOICE_CSS)
        buffer = BytesIO()
        writer = fitz.DocumentWriter(buffer)

        mediabox = fitz.paper_rect("a4")
        where = mediabox + (36, 36, -36, -36)

        more = 1
        while more:
            device = writer.begin_page(mediabox)
            more, _ = story.place(where)
            story.draw(device)
            writer.end_page()
        writer.close()

        return buffer.getvalue()
