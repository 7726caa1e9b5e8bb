"""Reconciles Stripe Checkout webhook events into orders, invoices and coupon usage.

Every order transition is a conditional update keyed on the gateway
session id and the expected current status. Settling a payment also
sets the order's settlement flags conditionally, so redelivered events
finish an interrupted settlement but never repeat a completed step.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import stripe

from src.api.middleware.error_handler import SignatureError
from src.core.config import get_settings
from src.core.stripe import get_stripe
from src.core.supabase import get_supabase_client
from src.models.order import Order
from src.services.cart_service import CartService
from src.services.checkout_service import CheckoutService
from src.services.coupon_service import CouponService
from src.services.email_service import EmailService
from src.services.invoice_service import InvoiceService
from src.services.notification_dispatcher import get_notification_dispatcher

logger = logging.getLogger(__name__)


class PaymentReconciliationService:
    """Service applying payment gateway events to stored orders."""

    def __init__(self) -> None:
        """Initialize reconciliation service with clients."""
        self.client = get_supabase_client()
        self.stripe = get_stripe()
        self.settings = get_settings()
        self.checkout_service = CheckoutService()
        self.invoice_service = InvoiceService()
        self.coupon_service = CouponService()
        self.cart_service = CartService()
        self.email_service = EmailService()
        self.dispatcher = get_notification_dispatcher()

    def verify_webhook_signature(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify Stripe webhook signature and return event.

        Args:
            payload: Raw webhook payload bytes.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Verified Stripe event.

        Raises:
            SignatureError: If the signature or payload is invalid, or no
                webhook secret is configured.
        """
        if not self.settings.stripe_webhook_secret:
            logger.error("Stripe webhook secret is not configured")
            raise SignatureError("Webhook secret is not configured")

        try:
            return self.stripe.Webhook.construct_event(
                payload, sig_header, self.settings.stripe_webhook_secret
            )
        except stripe.error.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise SignatureError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("Invalid webhook payload: %s", str(e))
            raise SignatureError("Invalid webhook payload") from e

    async def handle_event(self, event: dict[str, Any]) -> Order | None:
        """Route a verified event to its handler.

        Unrecognized event types are logged and ignored.

        Args:
            event: Verified Stripe event.

        Returns:
            dict | None: The order changed by this delivery, if any.
        """
        event_type = event.get("type", "")

        if event_type == "checkout.session.completed":
            return await self.handle_checkout_completed(event)
        if event_type == "checkout.session.async_payment_succeeded":
            return await self.handle_async_payment_succeeded(event)
        if event_type == "checkout.session.async_payment_failed":
            return await self.handle_async_payment_failed(event)
        if event_type == "checkout.session.expired":
            return await self.handle_checkout_expired(event)

        logger.info("Ignoring unhandled webhook event type: %s", event_type)
        return None

    async def handle_checkout_completed(self, event: dict[str, Any]) -> Order | None:
        """Process checkout.session.completed.

        Delayed payment methods complete the session before the money
        arrives; those are settled by async_payment_succeeded instead.

        Args:
            event: Stripe webhook event data.

        Returns:
            dict | None: The order if this delivery marked it Paid.
        """
        session = event["data"]["object"]
        if session.get("payment_status") != "paid":
            logger.info(
                "Session %s completed with payment_status=%s, awaiting settlement",
                session.get("id"),
                session.get("payment_status"),
            )
            return None

        return await self._mark_paid(session)

    async def handle_async_payment_succeeded(self, event: dict[str, Any]) -> Order | None:
        """Process checkout.session.async_payment_succeeded.

        Args:
            event: Stripe webhook event data.

        Returns:
            dict | None: The order if this delivery marked it Paid.
        """
        return await self._mark_paid(event["data"]["object"])

    async def _mark_paid(self, session: dict[str, Any]) -> Order | None:
        """Settle the session's order: Paid, invoice synced, coupon counted, emails queued.

        The Unpaid to Paid flip happens once. If a later step fails the
        order stays Paid with ``payment_settled`` false, and a redelivery of
        the event finishes the remaining steps. Coupon usage is claimed
        through ``coupon_usage_recorded`` so it is counted at most once.
        """
        session_id = session["id"]

        response = (
            self.client.table("orders")
            .update({
                "payment_status": "Paid",
                "payment_date": datetime.now(timezone.utc).isoformat(),
            })
            .eq("payment_session_id", session_id)
            .eq("payment_status", "Unpaid")
            .execute()
        )

        if response.data:
            order: Order = response.data[0]
            logger.info("Order %s marked as Paid (session %s)", order["order_number"], session_id)
        else:
            pending = self._find_unsettled_paid_order(session_id)
            if pending is None:
                self._log_unmatched(session_id, "Paid")
                return None
            order = pending
            logger.warning("Resuming settlement of paid order %s (session %s)", order["order_number"], session_id)

        await self.invoice_service.sync_status(order["id"], "Paid")

        if order.get("coupon_id"):
            await self._record_coupon_usage_once(order)

        settled = (
            self.client.table("orders")
            .update({"payment_settled": True})
            .eq("id", order["id"])
            .neq("payment_settled", True)
            .execute()
        )
        if not settled.data:
            # A concurrent delivery finished first
            return None

        order = settled.data[0]
        self.dispatcher.submit(
            f"payment_confirmation:{order['order_number']}",
            lambda: self.email_service.send_payment_confirmation_email(order),
        )
        self.dispatcher.submit(
            f"admin_payment_received:{order['order_number']}",
            lambda: self.email_service.send_admin_payment_received_email(order),
        )

        return order

    def _find_unsettled_paid_order(self, session_id: str) -> Order | None:
        response = (
            self.client.table("orders")
            .select("*")
            .eq("payment_session_id", session_id)
            .eq("payment_status", "Paid")
            .neq("payment_settled", True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def _record_coupon_usage_once(self, order: Order) -> None:
        """Count the order's coupon redemption unless a delivery already did.

        The claim is released again when recording fails, so the next
        redelivery retries it.
        """
        claim = (
            self.client.table("orders")
            .update({"coupon_usage_recorded": True})
            .eq("id", order["id"])
            .neq("coupon_usage_recorded", True)
            .execute()
        )
        if not claim.data:
            logger.info("Coupon usage for order %s already recorded", order["order_number"])
            return

        try:
            await self.coupon_service.record_usage(order["coupon_id"], order["user_id"])
        except Exception:
            logger.error("Recording coupon usage for order %s failed; releasing claim", order["order_number"])
            (
                self.client.table("orders")
                .update({"coupon_usage_recorded": False})
                .eq("id", order["id"])
                .execute()
            )
            raise

    async def handle_async_payment_failed(self, event: dict[str, Any]) -> Order | None:
        """Process checkout.session.async_payment_failed.

        Args:
            event: Stripe webhook event data.

        Returns:
            dict | None: The order if this delivery marked it Failed.
        """
        session_id = event["data"]["object"]["id"]

        response = (
            self.client.table("orders")
            .update({"payment_status": "Failed"})
            .eq("payment_session_id", session_id)
            .eq("payment_status", "Unpaid")
            .execute()
        )

        if not response.data:
            self._log_unmatched(session_id, "Failed")
            return None

        order: Order = response.data[0]
        logger.info("Order %s marked as Failed (session %s)", order["order_number"], session_id)
        await self.invoice_service.sync_status(order["id"], "Failed")
        return order

    async def handle_checkout_expired(self, event: dict[str, Any]) -> Order | None:
        """Process checkout.session.expired.

        Resets the order to Unpaid and, while the buyer's cart still holds
        items, opens a replacement session priced from the order's own
        snapshot. The expired session id is then stale for good.

        Args:
            event: Stripe webhook event data.

        Returns:
            dict | None: The order as left by this delivery.
        """
        session = event["data"]["object"]
        session_id = session["id"]

        response = (
            self.client.table("orders")
            .update({"payment_status": "Unpaid"})
            .eq("payment_session_id", session_id)
            .neq("payment_status", "Paid")
            .execute()
        )

        if not response.data:
            self._log_unmatched(session_id, "Unpaid")
            return None

        order: Order = response.data[0]
        await self.invoice_service.sync_status(order["id"], "Unpaid")

        cart = await self.cart_service.get_cart(order["user_id"])
        if cart.is_empty:
            logger.info("Session %s expired for order %s; cart empty, not re-issuing", session_id, order["order_number"])
            return order

        new_session = await self.checkout_service.open_payment_session(
            products=order["products"],
            order_number=order["order_number"],
            currency=order["currency"],
            exchange_rate=order["exchange_rate"],
            discount=order.get("coupon_discount") or 0,
            user_id=str(order["user_id"]),
            coupon_id=order.get("coupon_id"),
            customer_email=order.get("customer_email"),
            success_url=session.get("success_url"),
            cancel_url=session.get("cancel_url"),
        )

        updated = (
            self.client.table("orders")
            .update({"payment_session_id": new_session.id, "payment_url": new_session.url})
            .eq("id", order["id"])
            .eq("payment_session_id", session_id)
            .execute()
        )
        logger.info(
            "Session %s expired for order %s; re-issued as %s",
            session_id,
            order["order_number"],
            new_session.id,
        )
        return updated.data[0] if updated.data else order

    def _log_unmatched(self, session_id: str, target_status: str) -> None:
        """Explain why an event changed nothing."""
        response = (
            self.client.table("orders")
            .select("order_number, payment_status")
            .eq("payment_session_id", session_id)
            .maybe_single()
            .execute()
        )

        if response and response.data:
            logger.info(
                "Order %s already %s; ignoring replayed event for session %s (wanted %s)",
                response.data["order_number"],
                response.data["payment_status"],
                session_id,
                target_status,
            )
        else:
            logger.warning("No order for session %s (stale or unknown); event ignored", session_id)
