"""Unit tests for CheckoutService."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import pytest
import stripe

from src.api.middleware.error_handler import (
    ConflictError,
    CouponError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from src.schemas.auth import UserContext
from src.services.checkout_service import CheckoutService, generate_order_number
from src.services.currency_service import CurrencyQuote
from src.services.notification_dispatcher import NotificationDispatcher
from tests.fakes import FakeSupabase

USER_ID = "550e8400-e29b-41d4-a716-446655440000"


def line(product_id: str, unit_price: float, quantity: int = 1, **extra: Any) -> dict[str, Any]:
    """Build a stored cart line."""
    return {
        "product_id": product_id,
        "product_name": extra.pop("product_name", f"Product {product_id}"),
        "quantity": quantity,
        "unit_price": unit_price,
        "line_total": unit_price * quantity,
        **extra,
    }


def seed_cart(db: FakeSupabase, *products: dict[str, Any]) -> None:
    """Give the test user a cart."""
    db.seed("carts", {
        "user_id": USER_ID,
        "products": list(products),
        "total_quantity": sum(p["quantity"] for p in products),
        "total_price": sum(p["line_total"] for p in products),
    })


def seed_coupon(db: FakeSupabase, **overrides: Any) -> dict[str, Any]:
    """Add an active coupon, by default FLAT20 with a $50 floor."""
    row = {
        "code": "FLAT20",
        "applicable_scope": "all",
        "policy": "amountBased",
        "discount_type": "flat",
        "discount_value": 20,
        "min_order_amount": 50,
        "status": "Active",
        "used_count": 0,
    }
    row.update(overrides)
    return db.seed("coupons", row)[0]


@pytest.fixture
def user() -> UserContext:
    """The buyer."""
    return UserContext(user_id=UUID(USER_ID), email="buyer@example.com", role="authenticated")


@pytest.fixture
def checkout_service() -> CheckoutService:
    """Create CheckoutService settling in USD."""
    service = CheckoutService()
    service.currency_service.resolve = AsyncMock(
        return_value=CurrencyQuote(currency="usd", exchange_rate=Decimal("1"))
    )
    return service


class TestGenerateOrderNumber:
    """Tests for generate_order_number."""

    def test_formats_day_month_year_hour_minute(self) -> None:
        """Test the DDMMYYHHMM layout."""
        assert generate_order_number(datetime(2025, 1, 2, 3, 4, tzinfo=timezone.utc)) == "0201250304"


class TestCreateOrder:
    """Tests for create_order method."""

    @pytest.mark.asyncio
    async def test_paid_order_opens_session(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_stripe: MagicMock,
        user: UserContext,
    ) -> None:
        """Test a payable cart becomes an Unpaid order with a Stripe session."""
        seed_cart(fake_supabase, line("p1", 100.0, word_count=800))

        result = await checkout_service.create_order(user, ip="8.8.8.8")

        assert result["session_id"] == "cs_test_1"
        assert result["redirect_url"] is None

        order = fake_supabase.row("orders", id=result["order"]["id"])
        assert order["payment_status"] == "Unpaid"
        assert order["status"] == "Pending"
        assert order["payment_session_id"] == "cs_test_1"
        assert order["payment_url"] == "https://checkout.stripe.com/c/pay/cs_test_1"
        assert order["final_price"] == 100.0
        assert order["products"][0]["product_id"] == "p1"
        assert order["invoice_number"] == f"INV-{order['order_number']}"

        params = mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["mode"] == "payment"
        assert params["line_items"][0]["price_data"]["unit_amount"] == 10000
        assert params["line_items"][0]["price_data"]["currency"] == "usd"
        assert params["line_items"][0]["price_data"]["product_data"]["description"] == "800 words"
        assert params["metadata"]["user_id"] == USER_ID
        assert params["success_url"] == f"https://shop.example.com/order/order-confirmation/{order['order_number']}"
        assert params["customer_email"] == "buyer@example.com"
        mock_stripe.Coupon.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_issues_invoice_and_clears_cart(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        user: UserContext,
    ) -> None:
        """Test every order gets one invoice and the cart ends up empty."""
        seed_cart(fake_supabase, line("p1", 25.0, quantity=2))

        result = await checkout_service.create_order(user)

        invoices = fake_supabase.rows("invoices")
        assert len(invoices) == 1
        assert invoices[0]["order_id"] == result["order"]["id"]
        assert invoices[0]["status"] == "Unpaid"
        assert invoices[0]["final_amount"] == 50.0

        cart = fake_supabase.row("carts", user_id=USER_ID)
        assert cart["products"] == []
        assert cart["total_price"] == 0

    @pytest.mark.asyncio
    async def test_converts_prices_and_discount_to_local_currency(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_stripe: MagicMock,
        user: UserContext,
    ) -> None:
        """Test INR sessions re-price lines and carry the discount as a Stripe coupon."""
        checkout_service.currency_service.resolve = AsyncMock(
            return_value=CurrencyQuote(currency="inr", exchange_rate=Decimal("83.5"))
        )
        coupon = seed_coupon(fake_supabase)
        seed_cart(fake_supabase, line("p1", 10.0, quantity=10))

        result = await checkout_service.create_order(user, coupon_code="flat20", ip="49.36.0.1")

        order = result["order"]
        assert order["coupon_discount"] == 20.0
        assert order["final_price"] == 80.0
        assert order["coupon_id"] == coupon["id"]
        assert order["currency"] == "inr"

        params = mock_stripe.checkout.Session.create.call_args.kwargs
        assert params["line_items"][0]["price_data"]["unit_amount"] == 83500
        assert params["line_items"][0]["quantity"] == 10
        assert params["discounts"] == [{"coupon": "coupon_test_1"}]
        assert params["metadata"]["coupon_id"] == coupon["id"]
        mock_stripe.Coupon.create.assert_called_once_with(amount_off=167000, currency="inr", duration="once")

    @pytest.mark.asyncio
    async def test_item_specific_discount_zeroes_the_free_line(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_stripe: MagicMock,
        user: UserContext,
    ) -> None:
        """Test a 100%-off item is priced at zero instead of a gateway coupon."""
        seed_coupon(fake_supabase, code="FREEONE", discount_type="percentage", discount_value=100, min_order_amount=None)
        seed_cart(fake_supabase, line("p1", 40.0), line("p2", 60.0))

        result = await checkout_service.create_order(user, coupon_code="FREEONE")

        assert result["order"]["final_price"] == 60.0
        line_items = mock_stripe.checkout.Session.create.call_args.kwargs["line_items"]
        assert [item["price_data"]["unit_amount"] for item in line_items] == [0, 6000]
        mock_stripe.Coupon.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_free_line_matches_evaluated_line_for_repeated_product(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_stripe: MagicMock,
        user: UserContext,
    ) -> None:
        """Test Stripe charges the order's final price when one product appears on two lines."""
        seed_coupon(
            fake_supabase,
            code="SHORTFREE",
            discount_type="percentage",
            discount_value=100,
            min_order_amount=None,
            max_word_count=600,
        )
        seed_cart(fake_supabase, line("p1", 40.0, word_count=1000), line("p1", 20.0, word_count=500))

        result = await checkout_service.create_order(user, coupon_code="SHORTFREE")

        line_items = mock_stripe.checkout.Session.create.call_args.kwargs["line_items"]
        charged = sum(item["price_data"]["unit_amount"] * item["quantity"] for item in line_items)
        assert result["order"]["final_price"] == 40.0
        assert [item["price_data"]["unit_amount"] for item in line_items] == [4000, 0]
        assert charged == 4000
        mock_stripe.Coupon.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_free_order_skips_gateway(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_stripe: MagicMock,
        user: UserContext,
    ) -> None:
        """Test a $40 item with a 100% coupon is stored Paid with no session."""
        coupon = seed_coupon(
            fake_supabase, code="FREEONE", discount_type="percentage", discount_value=100, min_order_amount=None
        )
        seed_cart(fake_supabase, line("p1", 40.0))

        result = await checkout_service.create_order(user, coupon_code="FREEONE")

        order = fake_supabase.row("orders", id=result["order"]["id"])
        assert order["payment_status"] == "Paid"
        assert order["payment_session_id"] is None
        assert order["payment_date"] is not None
        assert order["final_price"] == 0.0
        assert result["session_id"] is None
        assert result["redirect_url"] == (
            f"https://shop.example.com/order/order-confirmation/{order['order_number']}"
        )
        assert fake_supabase.row("invoices", order_id=order["id"])["status"] == "Paid"
        assert fake_supabase.row("coupons", id=coupon["id"])["used_count"] == 0
        mock_stripe.checkout.Session.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_queues_order_and_invoice_emails(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_resend: MagicMock,
        dispatcher: NotificationDispatcher,
        user: UserContext,
    ) -> None:
        """Test customer and admin emails go out for the order and its invoice."""
        seed_cart(fake_supabase, line("p1", 100.0))

        await checkout_service.create_order(user)
        await dispatcher.drain()

        subjects = sorted(call.args[0]["subject"] for call in mock_resend.call_args_list)
        assert len(subjects) == 4
        assert any(s.startswith("Order ") for s in subjects)
        assert any(s.startswith("New order ") for s in subjects)
        assert any(s.startswith("Invoice INV-") for s in subjects)
        assert any(s.startswith("New invoice ") for s in subjects)

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self, checkout_service: CheckoutService, user: UserContext) -> None:
        """Test checkout without cart lines fails before anything is written."""
        with pytest.raises(ValidationError) as exc_info:
            await checkout_service.create_order(user)

        assert exc_info.value.error_type == "cart_empty"

    @pytest.mark.asyncio
    async def test_coupon_failure_creates_nothing(
        self, checkout_service: CheckoutService, fake_supabase: FakeSupabase, user: UserContext
    ) -> None:
        """Test a rejected coupon aborts the whole checkout."""
        seed_coupon(fake_supabase)
        seed_cart(fake_supabase, line("p1", 30.0))

        with pytest.raises(CouponError):
            await checkout_service.create_order(user, coupon_code="FLAT20")

        assert fake_supabase.rows("orders") == []
        assert fake_supabase.row("carts", user_id=USER_ID)["products"] != []

    @pytest.mark.asyncio
    async def test_gateway_failure_creates_nothing(
        self,
        checkout_service: CheckoutService,
        fake_supabase: FakeSupabase,
        mock_stripe: MagicMock,
        user: UserContext,
    ) -> None:
        """Test a Stripe error leaves no order, no invoice and the cart intact."""
        mock_stripe.checkout.Session.create.side_effect = stripe.error.APIConnectionError("Stripe down")
        seed_cart(fake_supabase, line("p1", 100.0))

        with pytest.raises(UpstreamError):
            await checkout_service.create_order(user)

        assert fake_supabase.rows("orders") == []
        assert fake_supabase.rows("invoices") == []
        assert len(fake_supabase.row("carts", user_id=USER_ID)["products"]) == 1

    @pytest.mark.asyncio
    async def test_missing_stripe_key(
        self, checkout_service: CheckoutService, fake_supabase: FakeSupabase, user: UserContext
    ) -> None:
        """Test an unconfigured gateway surfaces as UpstreamError."""
        checkout_service.settings = checkout_service.settings.model_copy(update={"stripe_secret_key": ""})
        seed_cart(fake_supabase, line("p1", 100.0))

        with pytest.raises(UpstreamError):
            await checkout_service.create_order(user)


class TestOrderQueries:
    """Tests for order lookup and deletion."""

    @pytest.mark.asyncio
    async def test_colliding_numbers_return_newest(
        self, checkout_service: CheckoutService, fake_supabase: FakeSupabase
    ) -> None:
        """Test a display number shared by two orders resolves to the newer one."""
        fake_supabase.seed("orders", {"user_id": USER_ID, "order_number": "0201250304", "payment_status": "Paid"})
        newer = fake_supabase.seed(
            "orders", {"user_id": USER_ID, "order_number": "0201250304", "payment_status": "Unpaid"}
        )[0]

        order = await checkout_service.get_order_for_user(USER_ID, "0201250304")

        assert order["id"] == newer["id"]

    @pytest.mark.asyncio
    async def test_other_users_order_not_found(
        self, checkout_service: CheckoutService, fake_supabase: FakeSupabase
    ) -> None:
        """Test orders are scoped to their owner."""
        fake_supabase.seed("orders", {"user_id": "someone-else", "order_number": "0201250304"})

        with pytest.raises(NotFoundError):
            await checkout_service.get_order_for_user(USER_ID, "0201250304")

    @pytest.mark.asyncio
    async def test_delete_unpaid_order_removes_invoice(
        self, checkout_service: CheckoutService, fake_supabase: FakeSupabase
    ) -> None:
        """Test deleting an unpaid order also deletes its invoice."""
        order = fake_supabase.seed(
            "orders", {"user_id": USER_ID, "order_number": "0201250304", "payment_status": "Unpaid"}
        )[0]
        fake_supabase.seed("invoices", {"order_id": order["id"], "invoice_number": "INV-0201250304"})

        await checkout_service.delete_order(USER_ID, "0201250304")

        assert fake_supabase.rows("orders") == []
        assert fake_supabase.rows("invoices") == []

    @pytest.mark.asyncio
    async def test_delete_paid_order_conflicts(
        self, checkout_service: CheckoutService, fake_supabase: FakeSupabase
    ) -> None:
        """Test paid orders cannot be deleted."""
        fake_supabase.seed("orders", {"user_id": USER_ID, "order_number": "0201250304", "payment_status": "Paid"})

        with pytest.raises(ConflictError):
            await checkout_service.delete_order(USER_ID, "0201250304")

        assert len(fake_supabase.rows("orders")) == 1
