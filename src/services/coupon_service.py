"""Coupon lookup, preview and usage accounting service."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.error_handler import ConflictError, NotFoundError, ValidationError
from src.core.supabase import get_supabase_client, is_unique_violation
from src.models.coupon import CouponUsage
from src.schemas.cart import CartSnapshot
from src.schemas.coupon import CouponApplyResponse, CouponDefinition, CouponDetails
from src.services.coupon_evaluator import (
    EvaluationResult,
    build_apply_message,
    evaluate,
)

logger = logging.getLogger(__name__)

# Compare-and-set retries for the shared usage counters
MAX_USAGE_UPDATE_ATTEMPTS = 5


class CouponService:
    """Service for reading coupons and recording their redemption."""

    def __init__(self) -> None:
        """Initialize coupon service with Supabase client."""
        self.client = get_supabase_client()

    async def get_coupon(self, coupon_id: UUID | str) -> CouponDefinition | None:
        """Get a coupon by ID regardless of status.

        Args:
            coupon_id: The coupon's UUID.

        Returns:
            CouponDefinition | None: The coupon or None if not found.
        """
        response = (
            self.client.table("coupons")
            .select("*")
            .eq("id", str(coupon_id))
            .maybe_single()
            .execute()
        )

        if not response or not response.data:
            return None
        return CouponDefinition.model_validate(response.data)

    async def get_active_coupon(self, code: str) -> CouponDefinition:
        """Get a usable coupon by code.

        Codes match case-insensitively. A coupon is usable when it is
        Active and has not expired.

        Args:
            code: Coupon code as typed by the customer.

        Returns:
            CouponDefinition: The coupon.

        Raises:
            NotFoundError: If no active, unexpired coupon has this code.
        """
        response = (
            self.client.table("coupons")
            .select("*")
            .eq("code", code.strip().upper())
            .eq("status", "Active")
            .maybe_single()
            .execute()
        )

        if not response or not response.data:
            raise NotFoundError("Invalid or expired coupon")

        coupon = CouponDefinition.model_validate(response.data)
        if coupon.expires_at is not None and coupon.expires_at <= datetime.now(timezone.utc):
            raise NotFoundError("Invalid or expired coupon")

        return coupon

    async def get_user_usage_count(self, coupon_id: UUID | str, user_id: UUID | str) -> int:
        """Get how many paid orders a user has redeemed a coupon on.

        Args:
            coupon_id: The coupon's UUID.
            user_id: The user's UUID.

        Returns:
            int: Usage count, 0 if the user never used it.
        """
        row = self._get_usage_row(coupon_id, user_id)
        return int(row["usage_count"]) if row else 0

    async def evaluate_for_user(
        self,
        code: str,
        cart: CartSnapshot,
        user_id: UUID | str | None,
    ) -> tuple[CouponDefinition, EvaluationResult]:
        """Look up a coupon and evaluate it against a cart.

        Args:
            code: Coupon code.
            cart: Cart snapshot in USD.
            user_id: Caller, or None for an anonymous preview (skips the
                per-user limit).

        Returns:
            tuple: The coupon and its evaluation.

        Raises:
            NotFoundError: Unknown or expired coupon.
            CouponError: The coupon does not apply to this cart.
        """
        coupon = await self.get_active_coupon(code)

        user_usage = None
        if user_id is not None and coupon.id is not None:
            user_usage = await self.get_user_usage_count(coupon.id, user_id)

        return coupon, evaluate(coupon, cart, user_usage_count=user_usage)

    async def preview(
        self,
        code: str | None,
        cart: CartSnapshot,
        user_id: UUID | str | None = None,
    ) -> CouponApplyResponse:
        """Compute the storefront's coupon preview. Never writes.

        Args:
            code: Coupon code, or None/empty to price the cart without one.
            cart: The storefront's local cart.
            user_id: Authenticated caller, if any.

        Returns:
            CouponApplyResponse: Totals, per-product discounts and rule details.

        Raises:
            ValidationError: If the cart is empty.
            NotFoundError: Unknown or expired coupon.
            CouponError: The coupon does not apply to this cart.
        """
        if cart.is_empty:
            raise ValidationError("Cart cannot be empty")

        if not code:
            return CouponApplyResponse(
                message="No coupon applied",
                original_total=cart.total_price,
                coupon_discount=0,
                final_price=cart.total_price,
            )

        coupon, result = await self.evaluate_for_user(code, cart, user_id)
        return CouponApplyResponse(
            message=build_apply_message(coupon, result),
            original_total=cart.total_price,
            coupon_discount=result.discount,
            final_price=result.discounted_total,
            applied_to=result.applied_product_ids,
            product_discounts=result.product_discounts(),
            coupon_details=CouponDetails.from_coupon(coupon),
        )

    async def record_usage(self, coupon_id: UUID | str, user_id: UUID | str) -> None:
        """Count one redemption of a coupon by a user.

        Call only after a payment is confirmed, and only once per order.
        Both counters are advanced with compare-and-set updates so that
        concurrent redemptions are never lost.

        Args:
            coupon_id: The redeemed coupon's UUID.
            user_id: The paying user's UUID.

        Raises:
            NotFoundError: If the coupon no longer exists.
            ConflictError: If a counter could not be advanced after retries.
        """
        self._increment_used_count(str(coupon_id))
        self._increment_user_usage(str(coupon_id), str(user_id))
        logger.info("Recorded usage of coupon %s by user %s", coupon_id, user_id)

    def _increment_used_count(self, coupon_id: str) -> None:
        for _ in range(MAX_USAGE_UPDATE_ATTEMPTS):
            response = (
                self.client.table("coupons")
                .select("used_count")
                .eq("id", coupon_id)
                .maybe_single()
                .execute()
            )
            if not response or not response.data:
                raise NotFoundError("Coupon not found")

            current = int(response.data["used_count"] or 0)
            updated = (
                self.client.table("coupons")
                .update({"used_count": current + 1})
                .eq("id", coupon_id)
                .eq("used_count", current)
                .execute()
            )
            if updated.data:
                return

        raise ConflictError(f"Could not update usage count of coupon {coupon_id}")

    def _get_usage_row(self, coupon_id: UUID | str, user_id: UUID | str) -> CouponUsage | None:
        response = (
            self.client.table("coupon_usages")
            .select("*")
            .eq("coupon_id", str(coupon_id))
            .eq("user_id", str(user_id))
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    def _increment_user_usage(self, coupon_id: str, user_id: str) -> None:
        for _ in range(MAX_USAGE_UPDATE_ATTEMPTS):
            row = self._get_usage_row(coupon_id, user_id)

            if row is None:
                try:
                    self.client.table("coupon_usages").insert(
                        {"coupon_id": coupon_id, "user_id": user_id, "usage_count": 1}
                    ).execute()
                    return
                except PostgrestAPIError as e:
                    if not is_unique_violation(e):
                        raise
                    # Another redemption created the row first; count on top of it
                    logger.info("Usage row for coupon %s user %s appeared concurrently", coupon_id, user_id)
                    continue

            current = int(row["usage_count"])
            updated = (
                self.client.table("coupon_usages")
                .update({"usage_count": current + 1})
                .eq("id", row["id"])
                .eq("usage_count", current)
                .execute()
            )
            if updated.data:
                return

        raise ConflictError(f"Could not update usage of coupon {coupon_id} for user {user_id}")
