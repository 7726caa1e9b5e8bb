"""Access token verification for Supabase-issued JWTs."""

import json
from enum import Enum
from functools import lru_cache
from typing import Any

import jwt
from jwt import PyJWK

from src.core.config import get_settings
from src.schemas.auth import TokenPayload


class AuthErrorCode(str, Enum):
    """Authentication error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class AuthError(Exception):
    """Raised when an access token cannot be trusted."""

    def __init__(self, message: str, code: AuthErrorCode) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


@lru_cache
def get_signing_key() -> Any:
    """Load the verification key from the configured JWK.

    Returns:
        Public key for JWT verification.

    Raises:
        AuthError: If the JWK is missing or malformed.
    """
    jwk_json = get_settings().supabase_signing_key_jwk
    if not jwk_json:
        raise AuthError("Signing key not configured", AuthErrorCode.INVALID_TOKEN)

    try:
        jwk_data = json.loads(jwk_json)
    except json.JSONDecodeError as e:
        raise AuthError(f"Invalid signing key JWK format: {e}", AuthErrorCode.INVALID_TOKEN) from e

    return PyJWK.from_dict(jwk_data).key


def decode_jwt(token: str) -> TokenPayload:
    """Verify an ES256 access token and return its claims.

    Checks signature, expiry, issue time and audience.

    Args:
        token: The bearer token.

    Returns:
        TokenPayload: Validated claims.

    Raises:
        AuthError: If the token is expired, forged or malformed.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            get_signing_key(),
            algorithms=["ES256"],
            audience=get_settings().jwt_audience,
            options={"require": ["exp", "iat", "sub"]},
        )

    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token has expired", AuthErrorCode.TOKEN_EXPIRED) from e

    except jwt.InvalidSignatureError as e:
        raise AuthError("Invalid token signature", AuthErrorCode.INVALID_SIGNATURE) from e

    except jwt.InvalidAudienceError as e:
        raise AuthError("Token audience not accepted", AuthErrorCode.UNAUTHORIZED) from e

    except jwt.MissingRequiredClaimError as e:
        raise AuthError(f"Token missing required claim: {e}", AuthErrorCode.INVALID_TOKEN) from e

    except jwt.PyJWTError as e:
        raise AuthError(f"Invalid token: {e}", AuthErrorCode.INVALID_TOKEN) from e

    return TokenPayload.model_validate(payload)
