"""Supabase client for the carts, coupons, orders and invoices tables."""

from functools import lru_cache
from typing import Any

from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client, create_client

from src.core.config import get_settings

# Postgres SQLSTATE for a unique constraint violation
UNIQUE_VIOLATION = "23505"

# Table queried by the readiness check
READINESS_TABLE = "orders"


@lru_cache
def get_supabase_client() -> Client:
    """Get the cached Supabase client.

    Authenticates with the secret key, so row level security does not
    apply; every query must scope rows to the caller itself.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_secret_key)


def is_unique_violation(error: PostgrestAPIError) -> bool:
    """Check if a PostgREST error was raised by a unique constraint."""
    return str(error.code) == UNIQUE_VIOLATION


async def check_database_connection() -> dict[str, Any]:
    """Run a one-row select to prove the database answers.

    Returns:
        dict: ``healthy`` flag and, on failure, ``error``.
    """
    try:
        get_supabase_client().table(READINESS_TABLE).select("id").limit(1).execute()
    except Exception as e:
        return {"healthy": False, "error": str(e)}
    return {"healthy": True}
