"""Coupon API routes."""

from fastapi import APIRouter

from src.api.deps import OptionalUser
from src.schemas.coupon import CouponApplyRequest, CouponApplyResponse
from src.services.coupon_service import CouponService

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post(
    "/apply",
    response_model=CouponApplyResponse,
    response_model_by_alias=True,
    summary="Preview a coupon",
    description=(
        "Prices the storefront's local cart with a coupon without redeeming it. "
        "Works anonymously; with a bearer token the per-user limit is checked too."
    ),
)
async def apply_coupon(data: CouponApplyRequest, user: OptionalUser) -> CouponApplyResponse:
    """Preview the discount a coupon would give.

    Args:
        data: Coupon code and local cart.
        user: The caller, if signed in.

    Returns:
        CouponApplyResponse: Totals, per-product discounts and rule details.
    """
    service = CouponService()
    return await service.preview(
        code=data.code,
        cart=data.local_cart,
        user_id=user.user_id if user else None,
    )
