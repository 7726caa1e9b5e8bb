"""Pure coupon evaluation: eligibility, discount amount and distribution.

Nothing in this module touches the database. ``CouponService`` loads the
coupon and the caller's usage, then hands both to :func:`evaluate`.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from src.api.middleware.error_handler import CouponError, CouponErrorReason
from src.core.money import ZERO, floor_money, round_money
from src.schemas.cart import CartLineItem, CartSnapshot
from src.schemas.coupon import CouponDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult:
    """Outcome of applying one coupon to one cart snapshot.

    Attributes:
        discount: Discount in USD. A flat amount may exceed the cart total;
            only ``discounted_total`` is clamped.
        discounted_total: ``max(0, cart total - discount)``.
        applied_to: Lines the discount applies to.
        eligible_total: Sum of the applied lines' totals.
        free_line_index: Position in the cart of the line made free by the
            100%-off tier, None for every other discount.
    """

    discount: Decimal
    discounted_total: Decimal
    applied_to: tuple[CartLineItem, ...] = field(default_factory=tuple)
    eligible_total: Decimal = ZERO
    free_line_index: int | None = None

    @property
    def item_specific(self) -> bool:
        """True for the 100%-off tier, where one whole line is free."""
        return self.free_line_index is not None

    @property
    def applied_product_ids(self) -> list[str]:
        """Product ids of the discounted lines, in cart order."""
        return [item.product_id for item in self.applied_to]

    def product_discounts(self) -> dict[str, Decimal]:
        """Per-product share of the discount."""
        return distribute_discount(self.discount, self.applied_to)


def check_configuration(coupon: CouponDefinition) -> None:
    """Reject a flat discount larger than the minimum order it requires.

    Raises:
        CouponError: invalidConfiguration.
    """
    if (
        coupon.min_order_amount
        and coupon.discount_type == "flat"
        and coupon.discount_value > coupon.min_order_amount
    ):
        raise CouponError(
            CouponErrorReason.INVALID_CONFIGURATION,
            f"Discount value (${coupon.discount_value}) cannot exceed the minimum order "
            f"amount (${coupon.min_order_amount}) for a flat discount coupon",
        )


def check_usage_limits(coupon: CouponDefinition, user_usage_count: int | None = None) -> None:
    """Reject coupons whose global or per-user quota is exhausted.

    Args:
        coupon: The coupon being redeemed.
        user_usage_count: How many times the caller already used it. ``None``
            skips the per-user check (anonymous preview).

    Raises:
        CouponError: limitReached.
    """
    if coupon.total_usage_limit is not None and coupon.used_count >= coupon.total_usage_limit:
        raise CouponError(
            CouponErrorReason.LIMIT_REACHED,
            f'Coupon "{coupon.code}" has reached its usage limit',
        )

    if (
        user_usage_count is not None
        and coupon.usage_limit_per_user is not None
        and user_usage_count >= coupon.usage_limit_per_user
    ):
        raise CouponError(
            CouponErrorReason.LIMIT_REACHED,
            f'You\'ve reached the usage limit for coupon "{coupon.code}"',
        )


def eligible_items(coupon: CouponDefinition, cart: CartSnapshot) -> list[CartLineItem]:
    """Select the cart lines the coupon's scope covers."""
    if coupon.applicable_scope == "specificProducts":
        wanted = set(coupon.specific_products)
        return [item for item in cart.products if item.product_id in wanted]

    if coupon.applicable_scope == "productCategories":
        wanted = set(coupon.product_categories)
        return [item for item in cart.products if item.category_id in wanted]

    return list(cart.products)


def _evaluate_full_item(
    coupon: CouponDefinition, cart: CartSnapshot, eligible: list[CartLineItem]
) -> EvaluationResult:
    """Make the cheapest qualifying single-unit line free."""
    if coupon.max_word_count is not None:
        qualifying = [
            item
            for item in eligible
            if item.word_count is not None and item.word_count <= coupon.max_word_count
        ]
    else:
        qualifying = eligible

    if not qualifying:
        message = (
            f'Coupon "{coupon.code}" requires items with <= {coupon.max_word_count} words'
            if coupon.max_word_count is not None
            else f'No items qualify for coupon "{coupon.code}"'
        )
        raise CouponError(CouponErrorReason.INELIGIBLE, message)

    # min() keeps the first of equally priced lines
    chosen = min(qualifying, key=lambda item: item.line_total)
    if chosen.quantity != 1:
        raise CouponError(
            CouponErrorReason.INVALID_CONFIGURATION,
            f'"{coupon.code}" applies to single-item purchases only. '
            "Please set the quantity to 1 to use this discount.",
        )

    discount = round_money(chosen.line_total)
    return EvaluationResult(
        discount=discount,
        discounted_total=max(ZERO, cart.total_price - discount),
        applied_to=(chosen,),
        eligible_total=discount,
        free_line_index=next(i for i, item in enumerate(cart.products) if item is chosen),
    )


def evaluate(
    coupon: CouponDefinition,
    cart: CartSnapshot,
    user_usage_count: int | None = None,
) -> EvaluationResult:
    """Compute the discount a coupon grants on a cart.

    Usage limits are checked first, then the configuration guard, scope,
    the 100%-off tier, the quantity policy and finally the amount.

    Args:
        coupon: Validated coupon definition.
        cart: Cart snapshot priced in USD.
        user_usage_count: Caller's prior redemptions, or None to skip the
            per-user limit.

    Returns:
        EvaluationResult: The discount and the lines it applies to.

    Raises:
        CouponError: ineligible, limitReached, belowMinimum or
            invalidConfiguration.
    """
    check_usage_limits(coupon, user_usage_count)
    check_configuration(coupon)

    eligible = eligible_items(coupon, cart)
    if coupon.applicable_scope != "all" and not eligible:
        raise CouponError(
            CouponErrorReason.INELIGIBLE,
            f'No qualifying products found for coupon "{coupon.code}"',
        )

    if coupon.is_full_item_discount:
        return _evaluate_full_item(coupon, cart, eligible)

    if coupon.policy == "quantityBased" and not any(
        item.quantity >= coupon.min_quantity for item in eligible
    ):
        raise CouponError(
            CouponErrorReason.INELIGIBLE,
            f'Minimum quantity of {coupon.min_quantity} required for coupon "{coupon.code}"',
        )

    if coupon.min_order_amount is not None and cart.total_price < coupon.min_order_amount:
        raise CouponError(
            CouponErrorReason.BELOW_MINIMUM,
            f"Minimum order amount of ${coupon.min_order_amount} not met",
        )

    eligible_total = sum((item.line_total for item in eligible), ZERO)
    if coupon.discount_type == "percentage":
        discount = eligible_total * coupon.discount_value / 100
    else:
        discount = coupon.discount_value

    if coupon.max_discount_amount is not None:
        discount = min(discount, coupon.max_discount_amount)

    discount = floor_money(discount)
    result = EvaluationResult(
        discount=discount,
        discounted_total=max(ZERO, cart.total_price - discount),
        applied_to=tuple(eligible),
        eligible_total=eligible_total,
    )
    logger.debug(
        "Coupon %s grants %s on %s eligible of %s",
        coupon.code,
        result.discount,
        eligible_total,
        cart.total_price,
    )
    return result


def distribute_discount(discount: Decimal, items: tuple[CartLineItem, ...] | list[CartLineItem]) -> dict[str, Decimal]:
    """Split a discount across lines in proportion to their totals.

    Each share is rounded to cents on its own; the shares may drift from
    ``discount`` by up to one cent per line.
    """
    total = sum((item.line_total for item in items), ZERO)
    shares: dict[str, Decimal] = {}
    for item in items:
        share = round_money(discount * item.line_total / total) if total > 0 else ZERO
        shares[item.product_id] = shares.get(item.product_id, ZERO) + share
    return shares


def build_apply_message(coupon: CouponDefinition, result: EvaluationResult) -> str:
    """Describe where a discount landed, for the storefront."""
    applied = result.applied_to

    if coupon.applicable_scope == "specificProducts":
        if len(applied) == 1:
            return f'Discount applied to "{applied[0].product_name or "your item"}"'
        if len(applied) > 1:
            return f"Discount applied to {len(applied)} products"
    elif coupon.applicable_scope == "productCategories":
        return "Discount applied to products in selected categories"
    elif result.item_specific and applied:
        suffix = f" (max {coupon.max_word_count} words)" if coupon.max_word_count else ""
        return f'100% discount applied to "{applied[0].product_name or "your item"}"{suffix}'

    return "Coupon applied successfully"
