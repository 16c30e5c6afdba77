"""Supabase client construction for database operations."""

from typing import Any

from supabase import Client, create_client

from orderdesk.core.config import Settings


def create_supabase_client(settings: Settings) -> Client:
    """Create the Supabase client used for database operations.

    Uses secret key (sb_secret_) for backend operations, which bypasses RLS
    at the PostgREST level. Called once at process start; the client is
    passed to each repository rather than fetched from a global.

    Args:
        settings: Application settings.

    Returns:
        Client: Supabase client instance.
    """
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


async def check_database_connection(client: Client) -> dict[str, Any]:
    """Check if database connection is healthy.

    Performs a simple query to verify database connectivity.

    Args:
        client: Supabase client to probe.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client.table("orders").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
