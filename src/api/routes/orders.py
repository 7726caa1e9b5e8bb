"""Order API routes: checkout, order history and the Stripe webhook."""

import logging

from fastapi import APIRouter, Request, Response, status

from src.api.deps import CurrentUser, StripeSignature
from src.schemas.order import (
    CreateOrderRequest,
    CreateOrderResponse,
    OrderListResponse,
    OrderResponse,
)
from src.services.checkout_service import CheckoutService
from src.services.payment_reconciliation_service import PaymentReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post(
    "",
    response_model=CreateOrderResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order",
    description="Creates an order from the caller's cart, applies an optional coupon and opens a Stripe session.",
)
async def create_order(data: CreateOrderRequest, user: CurrentUser, request: Request) -> CreateOrderResponse:
    """Place an order from the authenticated user's cart.

    Args:
        data: Coupon code, payment method and client IP.
        user: The authenticated buyer.
        request: Used for the client IP when the body omits it.

    Returns:
        CreateOrderResponse: The order plus a redirect URL (free orders) or
            a gateway session id (paid orders).
    """
    service = CheckoutService()
    ip = data.ip or (request.client.host if request.client else None)

    result = await service.create_order(
        user=user,
        coupon_code=data.coupon_code,
        payment_method=data.payment_method,
        ip=ip,
    )

    return CreateOrderResponse(
        order=OrderResponse.model_validate(result["order"]),
        redirect_url=result["redirect_url"],
        session_id=result["session_id"],
    )


@router.post(
    "/stripe-webhook",
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives Stripe Checkout events. The signature over the raw body is verified first.",
)
async def stripe_webhook(request: Request, signature: StripeSignature) -> dict[str, bool]:
    """Handle Stripe webhook events.

    Handles:
    - checkout.session.completed: marks a paid order Paid and counts coupon usage
    - checkout.session.async_payment_succeeded: same, for delayed payment methods
    - checkout.session.async_payment_failed: marks the order Failed
    - checkout.session.expired: resets to Unpaid and re-issues a session

    Args:
        request: Used for the raw body the signature covers.
        signature: The Stripe-Signature header.

    Returns:
        dict: ``{"received": true}``, also for ignored event types.

    Raises:
        SignatureError: 400 if the signature header is missing or invalid.
    """
    payload = await request.body()

    service = PaymentReconciliationService()
    event = service.verify_webhook_signature(payload, signature)

    logger.info("Processing Stripe webhook event: %s", event["type"])
    await service.handle_event(event)

    return {"received": True}


@router.get(
    "",
    response_model=OrderListResponse,
    response_model_by_alias=True,
    summary="List my orders",
    description="Returns the authenticated user's orders, newest first.",
)
async def list_orders(user: CurrentUser) -> OrderListResponse:
    """List all orders for the current user.

    Args:
        user: The authenticated user.

    Returns:
        OrderListResponse: List of orders.
    """
    service = CheckoutService()
    orders = await service.get_orders_for_user(user.user_id)
    return OrderListResponse(items=[OrderResponse.model_validate(order) for order in orders])


@router.get(
    "/{order_number}",
    response_model=OrderResponse,
    response_model_by_alias=True,
    summary="Get order by number",
    description="Returns one of the authenticated user's orders.",
)
async def get_order(order_number: str, user: CurrentUser) -> OrderResponse:
    """Get a single order by its display number.

    Args:
        order_number: Display order number.
        user: The authenticated user.

    Returns:
        OrderResponse: The order data.

    Raises:
        NotFoundError: 404 if the user has no such order.
    """
    service = CheckoutService()
    order = await service.get_order_for_user(user.user_id, order_number)
    return OrderResponse.model_validate(order)


@router.delete(
    "/{order_number}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unpaid order",
    description="Deletes one of the authenticated user's unpaid orders and its invoice.",
)
async def delete_order(order_number: str, user: CurrentUser) -> Response:
    """Delete an unpaid order and its invoice.

    Args:
        order_number: Display order number.
        user: The authenticated user.

    Raises:
        NotFoundError: 404 if the user has no such order.
        ConflictError: 409 if the order is paid.
    """
    service = CheckoutService()
    await service.delete_order(user.user_id, order_number)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
