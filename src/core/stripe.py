"""Stripe SDK setup for Checkout Sessions, Coupons and webhook verification."""

import logging

import stripe

from src.core.config import get_settings

logger = logging.getLogger(__name__)

# Network retries done by the SDK itself on connection errors
STRIPE_MAX_NETWORK_RETRIES = 2


def configure_stripe() -> bool:
    """Apply the secret key and client options. Call once at startup.

    A missing key is not fatal: the API still serves coupon previews and
    order history, and checkout answers 502 until the key is set.

    Returns:
        bool: True if a secret key is configured.
    """
    settings = get_settings()
    stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES
    stripe.set_app_info(settings.app_name, version="0.1.0")

    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; payment sessions cannot be created")
        return False

    stripe.api_key = settings.stripe_secret_key
    return True


def get_stripe() -> stripe:
    """Get the Stripe module as configured by configure_stripe()."""
    return stripe
