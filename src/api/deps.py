"""Request dependencies: the calling shopper and the Stripe webhook signature."""

import logging
from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.auth import AuthError, decode_jwt
from src.api.middleware.error_handler import AuthenticationError, SignatureError
from src.schemas.auth import UserContext

logger = logging.getLogger(__name__)

BEARER_SCHEME = "bearer"


def _user_from_header(authorization: str) -> UserContext:
    """Verify a ``Bearer <token>`` header and return the user it names.

    Raises:
        AuthenticationError: Wrong scheme, bad token or a non-UUID subject.
    """
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != BEARER_SCHEME or not token or " " in token:
        raise AuthenticationError("Invalid authorization header format. Expected: Bearer <token>")

    try:
        claims = decode_jwt(token)
    except AuthError as e:
        raise AuthenticationError(e.message, details=[{"msg": e.message, "type": e.code.value}]) from e

    try:
        return claims.to_user_context()
    except ValueError as e:
        raise AuthenticationError("Invalid token subject") from e


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer access token")] = "",
) -> UserContext:
    """Require a signed-in shopper.

    Args:
        authorization: The Authorization header value.

    Returns:
        UserContext: The authenticated user.

    Raises:
        AuthenticationError: 401 if the header is missing or the token is not valid.
    """
    if not authorization:
        raise AuthenticationError("User must be logged in")
    return _user_from_header(authorization)


async def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
) -> UserContext | None:
    """Identify the shopper when a token is sent; anonymous callers get None.

    A token that is sent but not valid is still a 401.
    """
    if not authorization:
        return None
    return _user_from_header(authorization)


async def get_stripe_signature(
    stripe_signature: Annotated[str | None, Header(alias="stripe-signature")] = None,
) -> str:
    """Require the Stripe-Signature header on webhook deliveries.

    Raises:
        SignatureError: 400 if the header is absent.
    """
    if not stripe_signature:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise SignatureError("Missing Stripe-Signature header")
    return stripe_signature


CurrentUser = Annotated[UserContext, Depends(get_current_user)]
OptionalUser = Annotated[UserContext | None, Depends(get_optional_user)]
StripeSignature = Annotated[str, Depends(get_stripe_signature)]
