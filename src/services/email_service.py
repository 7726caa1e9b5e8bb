"""Email service using Resend for order, payment and invoice emails.

Send failures raise so the notification dispatcher can retry them.
"""

import logging
from html import escape
from typing import Any

import resend

from src.core.config import get_settings
from src.core.money import round_money

logger = logging.getLogger(__name__)


def _money(value: Any) -> str:
    return f"${round_money(value)}"


class EmailService:
    """Service for sending transactional emails via Resend."""

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.frontend_url = settings.frontend_url
        self.admin_emails = settings.admin_emails_list
        self.company_name = settings.company_name

    def _render(
        self,
        title: str,
        intro: str,
        rows: list[tuple[str, str]],
        action: tuple[str, str] | None = None,
    ) -> str:
        """Render the shared HTML layout.

        Args:
            title: Heading shown in the banner.
            intro: Opening paragraph (already escaped).
            rows: Label/value pairs for the summary table.
            action: Optional (label, url) call-to-action button.
        """
        table_rows = "".join(
            f'<tr><td style="padding: 8px 0; color: #6b7280;">{escape(label)}</td>'
            f'<td style="padding: 8px 0; text-align: right; font-weight: 600;">{escape(value)}</td></tr>'
            for label, value in rows
        )
        button = ""
        if action:
            label, url = action
            button = f"""
        <div style="text-align: center; margin: 30px 0;">
            <a href="{escape(url)}" style="background: #4f46e5; color: white; padding: 14px 32px; text-decoration: none; border-radius: 8px; font-weight: 600; font-size: 16px; display: inline-block;">
                {escape(label)}
            </a>
        </div>"""

        return f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(title)}</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, 'Helvetica Neue', Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #4f46e5; padding: 30px; border-radius: 10px 10px 0 0; text-align: center;">
        <h1 style="color: white; margin: 0; font-size: 24px;">{escape(title)}</h1>
    </div>

    <div style="background: #f9fafb; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 10px 10px;">
        <p style="font-size: 16px; margin-bottom: 20px;">{intro}</p>
        <table style="width: 100%; border-collapse: collapse;">{table_rows}</table>
        {button}
        <hr style="border: none; border-top: 1px solid #e5e7eb; margin: 25px 0;">
        <p style="font-size: 12px; color: #9ca3af; text-align: center; margin: 0;">{escape(self.company_name)}</p>
    </div>
</body>
</html>
"""

    def _send(self, to: list[str], subject: str, html_content: str, kind: str) -> dict[str, Any]:
        """Send one email through Resend.

        Raises:
            Exception: Whatever the Resend client raises; callers retry.
        """
        response = resend.Emails.send({
            "from": self.from_email,
            "to": to,
            "subject": subject,
            "html": html_content,
        })

        logger.info("%s email sent to %s, id: %s", kind, ", ".join(to), response.get("id"))
        return {"success": True, "email_id": response.get("id")}

    def _skip(self, kind: str, reference: str, reason: str) -> dict[str, Any]:
        logger.info("Skipping %s email for %s: %s", kind, reference, reason)
        return {"success": False, "error": reason}

    def _order_rows(self, order: dict[str, Any]) -> list[tuple[str, str]]:
        rows = [
            ("Order number", str(order["order_number"])),
            ("Subtotal", _money(order.get("total_price"))),
        ]
        if round_money(order.get("coupon_discount")) > 0:
            coupon = order.get("coupon_code") or "coupon"
            rows.append((f"Discount ({coupon})", f"-{_money(order.get('coupon_discount'))}"))
        rows.append(("Total", _money(order.get("final_price"))))
        rows.append(("Payment status", str(order.get("payment_status", ""))))
        return rows

    async def send_order_confirmation_email(self, order: dict[str, Any]) -> dict[str, Any]:
        """Send the customer their order summary.

        Includes a "Pay Now" link while the order is unpaid.

        Args:
            order: Order row.

        Returns:
            dict: Resend result with email ID, or a skip marker.
        """
        to_email = order.get("customer_email")
        if not to_email:
            return self._skip("Order confirmation", order["order_number"], "no customer email")

        if order.get("payment_status") != "Paid" and order.get("payment_url"):
            action = ("Pay Now", order["payment_url"])
        else:
            action = ("View Order", f"{self.frontend_url}/order/order-confirmation/{order['order_number']}")

        html_content = self._render(
            "Thank you for your order",
            f"We've received order <strong>{escape(str(order['order_number']))}</strong>.",
            self._order_rows(order),
            action,
        )
        return self._send([to_email], f"Order {order['order_number']} received", html_content, "Order confirmation")

    async def send_admin_new_order_email(self, order: dict[str, Any]) -> dict[str, Any]:
        """Alert admins about a newly placed order.

        Args:
            order: Order row.

        Returns:
            dict: Resend result with email ID, or a skip marker.
        """
        if not self.admin_emails:
            return self._skip("New order alert", order["order_number"], "no admin recipients")

        rows = [("Customer", str(order.get("customer_email") or order.get("user_id")))]
        rows.extend(self._order_rows(order))
        html_content = self._render(
            "New order placed",
            f"Order <strong>{escape(str(order['order_number']))}</strong> was just placed.",
            rows,
        )
        return self._send(self.admin_emails, f"New order {order['order_number']}", html_content, "New order alert")

    async def send_payment_confirmation_email(self, order: dict[str, Any]) -> dict[str, Any]:
        """Tell the customer their payment went through.

        Args:
            order: Order row, already Paid.

        Returns:
            dict: Resend result with email ID, or a skip marker.
        """
        to_email = order.get("customer_email")
        if not to_email:
            return self._skip("Payment confirmation", order["order_number"], "no customer email")

        html_content = self._render(
            "Payment received",
            f"Your payment for order <strong>{escape(str(order['order_number']))}</strong> was successful.",
            self._order_rows(order),
            ("View Order", f"{self.frontend_url}/order/order-confirmation/{order['order_number']}"),
        )
        return self._send(
            [to_email], f"Payment received for order {order['order_number']}", html_content, "Payment confirmation"
        )

    async def send_admin_payment_received_email(self, order: dict[str, Any]) -> dict[str, Any]:
        """Alert admins that an order was paid.

        Args:
            order: Order row, already Paid.

        Returns:
            dict: Resend result with email ID, or a skip marker.
        """
        if not self.admin_emails:
            return self._skip("Payment received alert", order["order_number"], "no admin recipients")

        rows = [("Customer", str(order.get("customer_email") or order.get("user_id")))]
        rows.extend(self._order_rows(order))
        html_content = self._render(
            "Payment received",
            f"Order <strong>{escape(str(order['order_number']))}</strong> has been paid.",
            rows,
        )
        return self._send(
            self.admin_emails, f"Payment received: order {order['order_number']}", html_content, "Payment received alert"
        )

    def _invoice_rows(self, invoice: dict[str, Any]) -> list[tuple[str, str]]:
        return [
            ("Invoice number", str(invoice["invoice_number"])),
            ("Subtotal", _money(invoice.get("total_amount"))),
            ("Discount", _money(invoice.get("discount_amount"))),
            ("Total", _money(invoice.get("final_amount"))),
            ("Status", str(invoice.get("status", ""))),
            ("Due date", str(invoice.get("due_date", ""))[:10]),
        ]

    async def send_invoice_generated_email(self, invoice: dict[str, Any]) -> dict[str, Any]:
        """Send the customer their new invoice.

        Args:
            invoice: Invoice row.

        Returns:
            dict: Resend result with email ID, or a skip marker.
        """
        to_email = invoice.get("customer_email")
        if not to_email:
            return self._skip("Invoice generated", invoice["invoice_number"], "no customer email")

        html_content = self._render(
            "Your invoice is ready",
            f"Invoice <strong>{escape(str(invoice['invoice_number']))}</strong> has been issued.",
            self._invoice_rows(invoice),
            ("View Invoices", f"{self.frontend_url}/invoices"),
        )
        return self._send([to_email], f"Invoice {invoice['invoice_number']}", html_content, "Invoice generated")

    async def send_admin_new_invoice_email(self, invoice: dict[str, Any]) -> dict[str, Any]:
        """Alert admins about a newly issued invoice.

        Args:
            invoice: Invoice row.

        Returns:
            dict: Resend result with email ID, or a skip marker.
        """
        if not self.admin_emails:
            return self._skip("New invoice alert", invoice["invoice_number"], "no admin recipients")

        rows = [("Customer", str(invoice.get("customer_email") or invoice.get("user_id")))]
        rows.extend(self._invoice_rows(invoice))
        html_content = self._render(
            "New invoice issued",
            f"Invoice <strong>{escape(str(invoice['invoice_number']))}</strong> was issued.",
            rows,
        )
        return self._send(
            self.admin_emails, f"New invoice {invoice['invoice_number']}", html_content, "New invoice alert"
        )
