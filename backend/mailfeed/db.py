"""
Database client configuration.
Uses Supabase for PostgreSQL (PostgREST queries) + Realtime (insert events).

The client is created on demand and handed to the log store; there is no
module-level singleton.
"""

from supabase import AsyncClient, acreate_client


async def create_supabase_client(url: str, key: str) -> AsyncClient:
    """Create an async Supabase client. The service key bypasses RLS."""
    if not url or not key:
        raise ValueError(
            "SUPABASE_URL and SUPABASE_SERVICE_KEY (or SUPABASE_KEY) must be set "
            "when LOG_STORE_BACKEND=supabase"
        )
    return await acreate_client(url, key)
