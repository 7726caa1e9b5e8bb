"""Settlement currency and exchange rate resolution.

Both lookups are best effort: any failure degrades to USD or to the
configured fallback rate so checkout is never blocked by them.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import get_settings
from src.core.money import to_decimal

logger = logging.getLogger(__name__)

# Retry configuration
MAX_RETRIES = 2
MIN_WAIT_SECONDS = 0.2
MAX_WAIT_SECONDS = 1

DEFAULT_CURRENCY = "usd"
SUPPORTED_CURRENCIES = ("usd", "inr")

_RETRYABLE = (httpx.TransportError, httpx.HTTPStatusError)


@dataclass(frozen=True)
class CurrencyQuote:
    """Currency an order settles in and its rate from USD."""

    currency: str
    exchange_rate: Decimal


class CurrencyService:
    """Resolves the settlement currency for a request origin."""

    def __init__(self) -> None:
        """Initialize currency service with settings."""
        self.settings = get_settings()

    async def resolve(self, ip: str | None) -> CurrencyQuote:
        """Resolve currency and exchange rate for a client IP.

        Args:
            ip: Client IP address, if known.

        Returns:
            CurrencyQuote: Currency code and USD -> currency rate.
        """
        currency = await self.get_currency_for_ip(ip)
        rate = await self.get_exchange_rate(currency)
        return CurrencyQuote(currency=currency, exchange_rate=rate)

    async def get_currency_for_ip(self, ip: str | None) -> str:
        """Map a client IP to "inr" for India and "usd" otherwise.

        Args:
            ip: Client IP address.

        Returns:
            str: Lower-case currency code, "usd" when the lookup fails.
        """
        if not ip:
            return DEFAULT_CURRENCY

        try:
            data = await self._fetch_json(
                f"{self.settings.ipinfo_url.rstrip('/')}/{ip}/json",
                params={"token": self.settings.ipinfo_token} if self.settings.ipinfo_token else None,
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Geo-IP lookup failed for %s, defaulting to %s: %s", ip, DEFAULT_CURRENCY, e)
            return DEFAULT_CURRENCY

        return "inr" if data.get("country") == "IN" else DEFAULT_CURRENCY

    async def get_exchange_rate(self, currency: str) -> Decimal:
        """Get the USD -> currency rate.

        Args:
            currency: Lower-case currency code.

        Returns:
            Decimal: 1 for USD, the looked-up rate, or the configured
                fallback when the lookup fails or lacks the currency.
        """
        if currency == DEFAULT_CURRENCY:
            return Decimal("1")

        fallback = to_decimal(self.settings.fallback_inr_exchange_rate)
        try:
            data = await self._fetch_json(self.settings.exchange_rate_url)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Exchange rate lookup failed, using fallback %s: %s", fallback, e)
            return fallback

        rate = (data.get("rates") or {}).get(currency.upper())
        if not rate:
            logger.warning("No %s rate in exchange rate response, using fallback %s", currency, fallback)
            return fallback

        return to_decimal(rate)

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=MIN_WAIT_SECONDS, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _fetch_json(self, url: str, params: dict[str, str] | None = None) -> dict:
        """GET a JSON document with a bounded timeout."""
        async with httpx.AsyncClient(timeout=self.settings.external_lookup_timeout_seconds) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            return response.json()
