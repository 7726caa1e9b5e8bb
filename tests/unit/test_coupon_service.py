"""Unit tests for CouponService."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from src.api.middleware.error_handler import ConflictError, CouponError, NotFoundError, ValidationError
from src.schemas.cart import CartSnapshot
from src.services.coupon_service import MAX_USAGE_UPDATE_ATTEMPTS, CouponService
from tests.fakes import FakeSupabase

USER_ID = "770e8400-e29b-41d4-a716-446655440000"


def coupon_row(**overrides: Any) -> dict[str, Any]:
    """Build a coupons table row."""
    row = {
        "code": "FLAT20",
        "description": "$20 off orders over $50",
        "applicable_scope": "all",
        "policy": "amountBased",
        "discount_type": "flat",
        "discount_value": 20,
        "min_order_amount": 50,
        "max_discount_amount": None,
        "min_quantity": 1,
        "max_word_count": None,
        "usage_limit_per_user": None,
        "total_usage_limit": None,
        "used_count": 0,
        "specific_products": [],
        "product_categories": [],
        "status": "Active",
        "expires_at": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def cart() -> CartSnapshot:
    """A $100 cart with two lines."""
    return CartSnapshot.model_validate({
        "products": [
            {"productId": "p1", "productName": "Blog Post", "quantity": 1, "unitPrice": 60},
            {"productId": "p2", "productName": "SEO Audit", "quantity": 2, "unitPrice": 20},
        ]
    })


@pytest.fixture
def coupon_service() -> CouponService:
    """Create CouponService on the fake database."""
    return CouponService()


class TestGetActiveCoupon:
    """Tests for get_active_coupon method."""

    @pytest.mark.asyncio
    async def test_matches_code_case_insensitively(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test lower-case input finds the upper-case stored code."""
        fake_supabase.seed("coupons", coupon_row())

        coupon = await coupon_service.get_active_coupon(" flat20 ")

        assert coupon.code == "FLAT20"
        assert coupon.discount_value == Decimal("20")

    @pytest.mark.asyncio
    async def test_inactive_coupon_not_found(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test inactive coupons are treated as unknown."""
        fake_supabase.seed("coupons", coupon_row(status="Inactive"))

        with pytest.raises(NotFoundError) as exc_info:
            await coupon_service.get_active_coupon("FLAT20")

        assert exc_info.value.message == "Invalid or expired coupon"

    @pytest.mark.asyncio
    async def test_expired_coupon_not_found(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test coupons past expiresAt are treated as unknown."""
        expired = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        fake_supabase.seed("coupons", coupon_row(expires_at=expired))

        with pytest.raises(NotFoundError):
            await coupon_service.get_active_coupon("FLAT20")


class TestPreview:
    """Tests for preview method."""

    @pytest.mark.asyncio
    async def test_preview_without_code(self, coupon_service: CouponService, cart: CartSnapshot) -> None:
        """Test no code returns the undiscounted totals."""
        response = await coupon_service.preview(None, cart)

        assert response.message == "No coupon applied"
        assert response.original_total == Decimal("100")
        assert response.coupon_discount == Decimal("0")
        assert response.final_price == Decimal("100")
        assert response.coupon_details is None

    @pytest.mark.asyncio
    async def test_preview_with_code(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase, cart: CartSnapshot
    ) -> None:
        """Test a valid coupon returns discount, distribution and details."""
        fake_supabase.seed("coupons", coupon_row())

        response = await coupon_service.preview("flat20", cart)

        assert response.coupon_discount == Decimal("20")
        assert response.final_price == Decimal("80")
        assert response.applied_to == ["p1", "p2"]
        assert response.product_discounts == {"p1": Decimal("12.00"), "p2": Decimal("8.00")}
        assert response.coupon_details.code == "FLAT20"
        assert response.coupon_details.min_order_amount == Decimal("50")

    @pytest.mark.asyncio
    async def test_preview_never_writes(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase, cart: CartSnapshot
    ) -> None:
        """Test previews only read."""
        fake_supabase.seed("coupons", coupon_row())
        fake_supabase.executed.clear()

        await coupon_service.preview("FLAT20", cart, user_id=USER_ID)

        assert {op for _, op in fake_supabase.executed} == {"select"}

    @pytest.mark.asyncio
    async def test_preview_rejects_empty_cart(self, coupon_service: CouponService) -> None:
        """Test an empty local cart is a validation error."""
        with pytest.raises(ValidationError) as exc_info:
            await coupon_service.preview("FLAT20", CartSnapshot())

        assert exc_info.value.message == "Cart cannot be empty"

    @pytest.mark.asyncio
    async def test_preview_checks_per_user_limit_for_signed_in_user(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase, cart: CartSnapshot
    ) -> None:
        """Test the per-user limit applies only when the caller is known."""
        coupon = fake_supabase.seed("coupons", coupon_row(usage_limit_per_user=1))[0]
        fake_supabase.seed("coupon_usages", {"coupon_id": coupon["id"], "user_id": USER_ID, "usage_count": 1})

        anonymous = await coupon_service.preview("FLAT20", cart)
        assert anonymous.coupon_discount == Decimal("20")

        with pytest.raises(CouponError) as exc_info:
            await coupon_service.preview("FLAT20", cart, user_id=USER_ID)

        assert exc_info.value.reason == "limitReached"


class TestRecordUsage:
    """Tests for record_usage method."""

    @pytest.mark.asyncio
    async def test_first_use_creates_usage_row(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test the first redemption increments usedCount and creates the user row."""
        coupon = fake_supabase.seed("coupons", coupon_row())[0]

        await coupon_service.record_usage(coupon["id"], USER_ID)

        assert fake_supabase.row("coupons", id=coupon["id"])["used_count"] == 1
        assert fake_supabase.row("coupon_usages", coupon_id=coupon["id"], user_id=USER_ID)["usage_count"] == 1
        assert await coupon_service.get_user_usage_count(coupon["id"], USER_ID) == 1

    @pytest.mark.asyncio
    async def test_repeat_use_increments_existing_row(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test later redemptions add to the same per-user row."""
        coupon = fake_supabase.seed("coupons", coupon_row(used_count=4))[0]
        fake_supabase.seed("coupon_usages", {"coupon_id": coupon["id"], "user_id": USER_ID, "usage_count": 2})

        await coupon_service.record_usage(coupon["id"], USER_ID)

        assert fake_supabase.row("coupons", id=coupon["id"])["used_count"] == 5
        assert len(fake_supabase.rows("coupon_usages")) == 1
        assert fake_supabase.row("coupon_usages", coupon_id=coupon["id"])["usage_count"] == 3

    @pytest.mark.asyncio
    async def test_concurrent_increment_is_not_lost(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test a write landing between read and update is retried on top of."""
        coupon = fake_supabase.seed("coupons", coupon_row(used_count=0))[0]
        raced = {"done": False}

        def concurrent_writer(table: str, payload: dict[str, Any]) -> None:
            if table == "coupons" and not raced["done"]:
                raced["done"] = True
                fake_supabase.tables["coupons"][0]["used_count"] = 1

        fake_supabase.before_update.append(concurrent_writer)

        await coupon_service.record_usage(coupon["id"], USER_ID)

        assert fake_supabase.row("coupons", id=coupon["id"])["used_count"] == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(
        self, coupon_service: CouponService, fake_supabase: FakeSupabase
    ) -> None:
        """Test a counter that keeps moving raises ConflictError."""
        coupon = fake_supabase.seed("coupons", coupon_row(used_count=0))[0]
        attempts = {"n": 0}

        def always_ahead(table: str, payload: dict[str, Any]) -> None:
            if table == "coupons":
                attempts["n"] += 1
                fake_supabase.tables["coupons"][0]["used_count"] += 1

        fake_supabase.before_update.append(always_ahead)

        with pytest.raises(ConflictError):
            await coupon_service.record_usage(coupon["id"], USER_ID)

        assert attempts["n"] == MAX_USAGE_UPDATE_ATTEMPTS

    @pytest.mark.asyncio
    async def test_missing_coupon(self, coupon_service: CouponService) -> None:
        """Test recording usage of a deleted coupon raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await coupon_service.record_usage("c0000000-0000-0000-0000-00000000dead", USER_ID)
