"""Caller identity carried by Supabase access tokens."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator


class UserContext(BaseModel):
    """The shopper behind the current request.

    ``email`` becomes the contact address of orders placed by this user.
    """

    model_config = ConfigDict(frozen=True)

    user_id: UUID
    email: str | None = None
    role: str | None = None


class TokenPayload(BaseModel):
    """The access token claims this service reads. Other claims are ignored."""

    model_config = ConfigDict(extra="ignore")

    sub: str
    exp: int
    iat: int
    email: str | None = None
    role: str | None = None
    aud: str | list[str] | None = None
    iss: str | None = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v: str | None) -> str | None:
        # Phone sign-ups carry an empty email claim
        return v or None

    def to_user_context(self) -> UserContext:
        """Build the request's user context.

        Raises:
            ValueError: If ``sub`` is not a UUID.
        """
        return UserContext(user_id=UUID(self.sub), email=self.email, role=self.role)
