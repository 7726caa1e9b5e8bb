"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from jwt.algorithms import ECAlgorithm

from tests.fakes import FakeSupabase
from tests.tokens import TEST_SIGNING_KEY, create_test_token

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ["SUPABASE_SIGNING_KEY_JWK"] = ECAlgorithm.to_jwk(TEST_SIGNING_KEY.public_key())
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_stripe_publishable_key")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")
os.environ.setdefault("ADMIN_NOTIFICATION_EMAILS", "admin@example.com")
os.environ.setdefault("FRONTEND_URL", "https://shop.example.com")

SUPABASE_CLIENT_TARGETS = (
    "src.core.supabase.get_supabase_client",
    "src.services.cart_service.get_supabase_client",
    "src.services.coupon_service.get_supabase_client",
    "src.services.checkout_service.get_supabase_client",
    "src.services.invoice_service.get_supabase_client",
    "src.services.payment_reconciliation_service.get_supabase_client",
)


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def fake_supabase() -> Generator[FakeSupabase, None, None]:
    """Route every service's Supabase client to one in-memory database.

    Yields:
        FakeSupabase: The shared fake database.
    """
    db = FakeSupabase()
    patchers = [patch(target, return_value=db) for target in SUPABASE_CLIENT_TARGETS]
    for patcher in patchers:
        patcher.start()
    yield db
    for patcher in reversed(patchers):
        patcher.stop()


@pytest.fixture(autouse=True)
def mock_stripe() -> Generator[MagicMock, None, None]:
    """Replace the Stripe module handed out to services.

    Yields:
        MagicMock: Mocked Stripe module; sessions get ids ``cs_test_<n>``.
    """
    stripe_mock = MagicMock()
    counter = {"n": 0}

    def create_session(**kwargs: Any) -> MagicMock:
        counter["n"] += 1
        session = MagicMock()
        session.id = f"cs_test_{counter['n']}"
        session.url = f"https://checkout.stripe.com/c/pay/cs_test_{counter['n']}"
        return session

    stripe_mock.checkout.Session.create.side_effect = create_session
    stripe_mock.Coupon.create.return_value = MagicMock(id="coupon_test_1")

    with patch("src.services.checkout_service.get_stripe", return_value=stripe_mock), \
         patch("src.services.payment_reconciliation_service.get_stripe", return_value=stripe_mock):
        yield stripe_mock


@pytest.fixture(autouse=True)
def mock_resend() -> Generator[MagicMock, None, None]:
    """Capture outgoing emails instead of calling Resend.

    Yields:
        MagicMock: The patched ``resend.Emails.send``.
    """
    with patch("src.services.email_service.resend.Emails.send", return_value={"id": "email_123"}) as send:
        yield send


@pytest.fixture(autouse=True)
def dispatcher() -> Generator[Any, None, None]:
    """Install a fresh notification dispatcher without retry delays.

    Yields:
        NotificationDispatcher: The dispatcher services will submit to.
    """
    from src.services import notification_dispatcher

    instance = notification_dispatcher.NotificationDispatcher(max_attempts=2, retry_wait_multiplier=0)
    with patch.object(notification_dispatcher, "_dispatcher", instance):
        yield instance


@pytest.fixture
def token_factory() -> Callable[..., str]:
    """Provide the access token builder."""
    return create_test_token


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authorization header for the default test user."""
    return {"Authorization": f"Bearer {create_test_token()}"}


@pytest.fixture
def client(fake_supabase: FakeSupabase) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        fake_supabase: In-memory database fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
