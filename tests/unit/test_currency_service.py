"""Unit tests for CurrencyService."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.services.currency_service import CurrencyQuote, CurrencyService


@pytest.fixture
def currency_service() -> CurrencyService:
    """Create CurrencyService."""
    return CurrencyService()


class TestGetCurrencyForIp:
    """Tests for get_currency_for_ip method."""

    @pytest.mark.asyncio
    async def test_india_settles_in_inr(self, currency_service: CurrencyService) -> None:
        """Test an Indian IP maps to INR."""
        with patch.object(currency_service, "_fetch_json", AsyncMock(return_value={"country": "IN"})):
            assert await currency_service.get_currency_for_ip("49.36.0.1") == "inr"

    @pytest.mark.asyncio
    async def test_elsewhere_settles_in_usd(self, currency_service: CurrencyService) -> None:
        """Test other countries map to USD."""
        with patch.object(currency_service, "_fetch_json", AsyncMock(return_value={"country": "US"})):
            assert await currency_service.get_currency_for_ip("8.8.8.8") == "usd"

    @pytest.mark.asyncio
    async def test_missing_ip_skips_lookup(self, currency_service: CurrencyService) -> None:
        """Test no IP means USD without a remote call."""
        lookup = AsyncMock()
        with patch.object(currency_service, "_fetch_json", lookup):
            assert await currency_service.get_currency_for_ip(None) == "usd"

        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_lookup_failure_falls_back_to_usd(self, currency_service: CurrencyService) -> None:
        """Test a geo-IP outage never blocks checkout."""
        failing = AsyncMock(side_effect=httpx.ConnectError("unreachable"))
        with patch.object(currency_service, "_fetch_json", failing):
            assert await currency_service.get_currency_for_ip("49.36.0.1") == "usd"


class TestGetExchangeRate:
    """Tests for get_exchange_rate method."""

    @pytest.mark.asyncio
    async def test_usd_rate_is_one(self, currency_service: CurrencyService) -> None:
        """Test USD needs no lookup."""
        assert await currency_service.get_exchange_rate("usd") == Decimal("1")

    @pytest.mark.asyncio
    async def test_reads_rate_from_response(self, currency_service: CurrencyService) -> None:
        """Test the rate for the upper-cased currency is used."""
        with patch.object(currency_service, "_fetch_json", AsyncMock(return_value={"rates": {"INR": 83.12}})):
            assert await currency_service.get_exchange_rate("inr") == Decimal("83.12")

    @pytest.mark.asyncio
    async def test_failure_uses_fallback(self, currency_service: CurrencyService) -> None:
        """Test a failed lookup returns the configured fallback rate."""
        error = httpx.HTTPStatusError(
            "503", request=httpx.Request("GET", "https://rates"), response=httpx.Response(503)
        )
        with patch.object(currency_service, "_fetch_json", AsyncMock(side_effect=error)):
            assert await currency_service.get_exchange_rate("inr") == Decimal("84.0")

    @pytest.mark.asyncio
    async def test_missing_currency_uses_fallback(self, currency_service: CurrencyService) -> None:
        """Test a response without the currency returns the fallback rate."""
        with patch.object(currency_service, "_fetch_json", AsyncMock(return_value={"rates": {"EUR": 0.9}})):
            assert await currency_service.get_exchange_rate("inr") == Decimal("84.0")


class TestResolve:
    """Tests for resolve method."""

    @pytest.mark.asyncio
    async def test_combines_currency_and_rate(self, currency_service: CurrencyService) -> None:
        """Test resolve returns both lookups as one quote."""
        responses = AsyncMock(side_effect=[{"country": "IN"}, {"rates": {"INR": 83.5}}])
        with patch.object(currency_service, "_fetch_json", responses):
            quote = await currency_service.resolve("49.36.0.1")

        assert quote == CurrencyQuote(currency="inr", exchange_rate=Decimal("83.5"))


class TestFetchJson:
    """Tests for the retried HTTP fetch."""

    @pytest.mark.asyncio
    async def test_retries_transport_errors(self, currency_service: CurrencyService) -> None:
        """Test one transport failure is retried before succeeding."""
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("reset", request=request)
            return httpx.Response(200, json={"country": "IN"})

        transport = httpx.MockTransport(handler)
        real_client = httpx.AsyncClient

        with patch(
            "src.services.currency_service.httpx.AsyncClient",
            lambda **kwargs: real_client(transport=transport, **kwargs),
        ):
            data = await currency_service._fetch_json("https://ipinfo.io/49.36.0.1/json")

        assert data == {"country": "IN"}
        assert calls["n"] == 2
