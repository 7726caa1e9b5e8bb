"""Service settings, read from the environment and an optional .env file."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Checkout service settings.

    Supabase connection details are required. Stripe, Resend and geo-IP
    settings default to empty so the service starts without them; readiness
    reports what is missing.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    app_name: str = Field(default="commerce-checkout-backend", description="Service name, also sent to Stripe")
    app_env: str = Field(default="development", description="development, staging or production")
    debug: bool = Field(default=False, description="Expose the OpenAPI docs")
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=8080, description="Bind port")
    max_request_body_size: int = Field(default=1_048_576, ge=1, description="Largest accepted request body in bytes")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Storefront origins allowed by CORS, comma-separated",
    )
    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Storefront base URL for checkout redirects and email links",
    )

    # Supabase
    supabase_url: str = Field(..., description="Project URL")
    supabase_secret_key: str = Field(..., description="Service-role key used for all table access")
    supabase_signing_key_jwk: str = Field(..., description="Public ES256 JWK that signs user access tokens")
    jwt_audience: str = Field(default="authenticated", description="Required aud claim of access tokens")

    # Stripe
    stripe_secret_key: str = Field(default="", description="Secret API key")
    stripe_webhook_secret: str = Field(default="", description="Signing secret of the webhook endpoint")
    stripe_publishable_key: str = Field(default="", description="Publishable key handed to the storefront")

    # Currency resolution
    ipinfo_token: str = Field(default="", description="ipinfo.io token for geo-IP lookups")
    ipinfo_url: str = Field(default="https://ipinfo.io", description="Geo-IP lookup base URL")
    exchange_rate_url: str = Field(
        default="https://api.exchangerate-api.com/v4/latest/USD",
        description="Endpoint returning USD-based rates",
    )
    fallback_inr_exchange_rate: float = Field(default=84.0, gt=0, description="USD to INR rate when the lookup fails")
    external_lookup_timeout_seconds: float = Field(default=5.0, gt=0, description="Timeout for geo-IP and rate lookups")

    # Invoices
    invoice_due_days: int = Field(default=7, ge=0, description="Days between invoice issue and due date")
    company_name: str = Field(default="Adaired Digital Media", description="Seller name printed on invoices")

    # Notifications (Resend)
    resend_api_key: str = Field(default="", description="Resend API key")
    email_from_address: str = Field(
        default="Orders <orders@example.com>",
        description="Sender of order and invoice emails",
    )
    admin_notification_emails: str = Field(
        default="",
        description="Staff recipients of new order and invoice alerts, comma-separated",
    )
    notification_max_attempts: int = Field(default=3, ge=1, description="Delivery attempts per notification job")

    @field_validator("frontend_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def cors_origins_list(self) -> list[str]:
        return _split_csv(self.cors_origins)

    @property
    def admin_emails_list(self) -> list[str]:
        return _split_csv(self.admin_notification_emails)

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_stripe_test_mode(self) -> bool:
        """True when the secret key is a Stripe test-mode key."""
        return self.stripe_secret_key.startswith("sk_test_")


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings.

    Tests call ``get_settings.cache_clear()`` after changing the environment.
    """
    return Settings()
