"""Supabase client construction and connectivity checks."""

from typing import Any

from supabase import Client, create_client

from src.core.config import Settings


def create_supabase_client(settings: Settings) -> Client:
    """Create the Supabase client used for all order store operations.

    Uses the secret key, which bypasses RLS at the PostgREST level. Only call
    this from the application lifespan; the client is shared by every request
    and handed to the store explicitly.

    Args:
        settings: Application settings with Supabase credentials.

    Returns:
        Client: Supabase client instance.
    """
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


async def check_database_connection(client: Client) -> dict[str, Any]:
    """Check if database connection is healthy.

    Performs a one-row query against the orders table.

    Args:
        client: Supabase client to query.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client.table("orders").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
