"""Checkout and order business logic service."""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

import stripe

from src.api.middleware.error_handler import (
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.money import ZERO, round_money, to_decimal, to_json_number, to_minor_units
from src.core.stripe import get_stripe
from src.core.supabase import get_supabase_client
from src.models.order import Order, OrderCreate
from src.schemas.auth import UserContext
from src.services.cart_service import CartService
from src.services.coupon_service import CouponService
from src.services.currency_service import CurrencyService
from src.services.email_service import EmailService
from src.services.invoice_service import InvoiceService
from src.services.notification_dispatcher import get_notification_dispatcher

logger = logging.getLogger(__name__)


def generate_order_number(now: datetime | None = None) -> str:
    """Build the display order number DDMMYYHHMM.

    Two orders placed in the same minute share a number; payments are
    matched by gateway session id, never by this number.
    """
    now = now or datetime.now(timezone.utc)
    return now.strftime("%d%m%y%H%M")


class CheckoutService:
    """Service for turning carts into orders and gateway sessions."""

    def __init__(self) -> None:
        """Initialize checkout service with clients."""
        self.client = get_supabase_client()
        self.stripe = get_stripe()
        self.settings = get_settings()
        self.cart_service = CartService()
        self.coupon_service = CouponService()
        self.currency_service = CurrencyService()
        self.invoice_service = InvoiceService()
        self.email_service = EmailService()
        self.dispatcher = get_notification_dispatcher()

    def confirmation_url(self, order_number: str) -> str:
        """Storefront page shown after checkout."""
        return f"{self.settings.frontend_url}/order/order-confirmation/{order_number}"

    def cancel_url(self) -> str:
        """Storefront page shown when the shopper abandons payment."""
        return f"{self.settings.frontend_url}/cart"

    async def create_order(
        self,
        user: UserContext,
        coupon_code: str | None = None,
        payment_method: str = "Stripe",
        ip: str | None = None,
    ) -> dict[str, Any]:
        """Create an order from the user's cart and open its payment session.

        Free orders are stored Paid without a gateway session. Every order
        gets its invoice, then the cart is cleared and notifications are
        queued. Coupon usage is not counted here; that happens once the
        payment is confirmed.

        Args:
            user: The buyer.
            coupon_code: Optional coupon to redeem.
            payment_method: Payment gateway name.
            ip: Client IP used to pick the settlement currency.

        Returns:
            dict: ``order`` row plus ``redirect_url`` (free orders) or
                ``session_id`` (paid orders).

        Raises:
            ValidationError: If the cart is empty.
            NotFoundError: Unknown or expired coupon.
            CouponError: The coupon does not apply to the cart.
            UpstreamError: If the payment session cannot be created.
        """
        cart = await self.cart_service.get_cart(user.user_id)
        if cart.is_empty:
            raise ValidationError("Cart is empty", error_type="cart_empty")

        quote = await self.currency_service.resolve(ip)

        coupon = None
        discount = ZERO
        final_price = cart.total_price
        free_line_index = None
        if coupon_code:
            coupon, result = await self.coupon_service.evaluate_for_user(coupon_code, cart, user.user_id)
            discount = result.discount
            final_price = result.discounted_total
            free_line_index = result.free_line_index

        order_number = generate_order_number()
        products = [item.model_dump(mode="json") for item in cart.products]

        session = None
        if final_price > 0:
            session = await self.open_payment_session(
                products=products,
                order_number=order_number,
                currency=quote.currency,
                exchange_rate=quote.exchange_rate,
                discount=discount,
                free_line_index=free_line_index,
                user_id=str(user.user_id),
                coupon_id=coupon.id if coupon else None,
                customer_email=user.email,
            )

        is_free = session is None
        order_data: OrderCreate = {
            "order_number": order_number,
            "user_id": str(user.user_id),
            "customer_email": user.email,
            "products": products,
            "total_quantity": cart.total_quantity,
            "total_price": to_json_number(cart.total_price),
            "coupon_discount": to_json_number(discount),
            "final_price": to_json_number(final_price),
            "coupon_id": coupon.id if coupon else None,
            "coupon_code": coupon.code if coupon else None,
            "currency": quote.currency,
            "exchange_rate": float(quote.exchange_rate),
            "payment_method": payment_method,
            "payment_session_id": None if is_free else session.id,
            "payment_url": None if is_free else session.url,
            "payment_status": "Paid" if is_free else "Unpaid",
            "status": "Pending",
            "payment_date": datetime.now(timezone.utc).isoformat() if is_free else None,
            "payment_settled": is_free,
            "coupon_usage_recorded": False,
        }

        response = self.client.table("orders").insert(order_data).execute()
        order: Order = response.data[0]
        logger.info(
            "Order %s created for user %s (final %s %s)",
            order_number,
            user.user_id,
            order_data["final_price"],
            "free" if is_free else f"session {session.id}",
        )

        invoice = await self.invoice_service.issue(order["id"], payment_method)
        order["invoice_number"] = invoice["invoice_number"]

        # Only after the order holds its own snapshot
        await self.cart_service.clear_cart(user.user_id)

        self.dispatcher.submit(
            f"order_confirmation:{order_number}",
            lambda: self.email_service.send_order_confirmation_email(order),
        )
        self.dispatcher.submit(
            f"admin_new_order:{order_number}",
            lambda: self.email_service.send_admin_new_order_email(order),
        )

        return {
            "order": order,
            "redirect_url": self.confirmation_url(order_number) if is_free else None,
            "session_id": None if is_free else session.id,
        }

    async def open_payment_session(
        self,
        products: list[dict[str, Any]],
        order_number: str,
        currency: str,
        exchange_rate: Decimal,
        discount: Decimal,
        user_id: str,
        free_line_index: int | None = None,
        coupon_id: str | None = None,
        customer_email: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> Any:
        """Create a Stripe Checkout Session priced in the settlement currency.

        Line prices are converted from USD with ``exchange_rate``. An
        item-specific discount zeroes that line; any other discount becomes
        a one-off Stripe amount-off coupon.

        Args:
            products: Order lines (snake_case cart line dicts, USD).
            order_number: Display number, used for the return URL.
            currency: Settlement currency code.
            exchange_rate: USD to settlement rate.
            discount: Discount in USD.
            user_id: Buyer, echoed back in webhook metadata.
            free_line_index: Position in ``products`` of the line made free
                by the 100%-off tier.
            coupon_id: Redeemed coupon, echoed back in webhook metadata.
            customer_email: Pre-fills the gateway form.
            success_url: Overrides the confirmation page.
            cancel_url: Overrides the cancel page.

        Returns:
            stripe.checkout.Session: The created session.

        Raises:
            UpstreamError: If Stripe is not configured or rejects the call.
        """
        if not self.settings.stripe_secret_key:
            raise UpstreamError("Stripe is not configured. Please set STRIPE_SECRET_KEY environment variable.")

        rate = to_decimal(exchange_rate)
        line_items = []
        for index, item in enumerate(products):
            unit_local = to_decimal(item.get("unit_price")) * rate
            if index == free_line_index:
                unit_local = ZERO

            name = item.get("product_name") or item.get("product_id")
            product_data: dict[str, Any] = {"name": name}
            if item.get("word_count"):
                product_data["description"] = f"{item['word_count']} words"

            line_items.append({
                "price_data": {
                    "currency": currency,
                    "product_data": product_data,
                    "unit_amount": to_minor_units(unit_local),
                },
                "quantity": int(item.get("quantity", 1)),
            })

        checkout_params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": line_items,
            "success_url": success_url or self.confirmation_url(order_number),
            "cancel_url": cancel_url or self.cancel_url(),
            "metadata": {
                "user_id": user_id,
                "coupon_id": coupon_id or "",
                "order_number": order_number,
            },
        }
        if customer_email:
            checkout_params["customer_email"] = customer_email

        try:
            discount_local = round_money(to_decimal(discount) * rate)
            if discount_local > 0 and free_line_index is None:
                gateway_coupon = self.stripe.Coupon.create(
                    amount_off=to_minor_units(discount_local),
                    currency=currency,
                    duration="once",
                )
                checkout_params["discounts"] = [{"coupon": gateway_coupon.id}]

            return self.stripe.checkout.Session.create(**checkout_params)

        except stripe.error.StripeError as e:
            logger.error("Stripe error creating checkout session for order %s: %s", order_number, str(e))
            raise UpstreamError("Payment session could not be created") from e

    async def get_orders_for_user(self, user_id: UUID | str) -> list[Order]:
        """Get all orders of a user, newest first.

        Args:
            user_id: The buyer's UUID.

        Returns:
            list[Order]: List of order data.
        """
        response = (
            self.client.table("orders")
            .select("*")
            .eq("user_id", str(user_id))
            .order("created_at", desc=True)
            .execute()
        )

        return response.data or []

    async def get_order_for_user(self, user_id: UUID | str, order_number: str) -> Order:
        """Get one of a user's orders by its display number.

        When numbers collide the newest order wins.

        Args:
            user_id: The buyer's UUID.
            order_number: Display order number.

        Returns:
            Order: The order data.

        Raises:
            NotFoundError: If the user has no such order.
        """
        response = (
            self.client.table("orders")
            .select("*")
            .eq("user_id", str(user_id))
            .eq("order_number", order_number)
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )

        if not response.data:
            raise NotFoundError("Order not found")
        return response.data[0]

    async def delete_order(self, user_id: UUID | str, order_number: str) -> None:
        """Delete an unpaid order together with its invoice.

        Args:
            user_id: The buyer's UUID.
            order_number: Display order number.

        Raises:
            NotFoundError: If the user has no such order.
            ConflictError: If the order has been paid.
        """
        order = await self.get_order_for_user(user_id, order_number)
        if order["payment_status"] == "Paid":
            raise ConflictError("Paid orders cannot be deleted")

        await self.invoice_service.delete_for_order(order["id"])
        self.client.table("orders").delete().eq("id", order["id"]).execute()
        logger.info("Deleted order %s (%s)", order_number, order["id"])
