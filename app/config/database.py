"""Supabase client configuration."""
from typing import Optional
import logging
from app.config.settings import settings

# Global client instance
_supabase_service_client: Optional[object] = None

logger = logging.getLogger(__name__)


def get_supabase_service_client():
    """
    Get Supabase client with service role for server-side operations.
    The chat backend reads and writes on behalf of the authenticated user,
    so it bypasses RLS and filters by user id itself.
    """
    global _supabase_service_client

    if _supabase_service_client is None:
        try:
            from supabase import create_client

            SUPABASE_URL = settings.SUPABASE_URL
            SUPABASE_SERVICE_KEY = settings.SUPABASE_SERVICE_ROLE_KEY or settings.SUPABASE_KEY

            # Validate credentials exist
            if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                raise ValueError("Supabase credentials missing in .env file")

            _supabase_service_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
            logger.info("Supabase service client initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize Supabase service client: {e}")
            raise

    return _supabase_service_client


