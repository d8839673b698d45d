"""
Supabase Client Configuration
Async connection to Supabase for the database tables, RPC and realtime channels
"""
from typing import Optional
from supabase import acreate_client, AsyncClient
from config import get_settings
import logging

logger = logging.getLogger(__name__)


class SupabaseClient:
    """Singleton async Supabase client (service role)"""

    _instance: Optional[AsyncClient] = None

    @classmethod
    async def get_client(cls) -> AsyncClient:
        """Get or create Supabase client instance"""
        if cls._instance is None:
            settings = get_settings()
            url = settings.supabase_url
            key = settings.supabase_service_role_key

            if not url or not key:
                raise ValueError(
                    "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set in environment variables"
                )

            cls._instance = await acreate_client(url, key)
            logger.info("✓ Supabase client initialized")

        return cls._instance


# Convenience function
async def get_supabase() -> AsyncClient:
    """Get Supabase client instance"""
    return await SupabaseClient.get_client()
