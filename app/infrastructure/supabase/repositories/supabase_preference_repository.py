from typing import Any, Dict, Optional

import structlog
from postgrest.exceptions import APIError

from app.domain.exceptions import PersistenceError
from app.domain.repositories.preference_repository import IPreferenceRepository

logger = structlog.get_logger(__name__)


class SupabasePreferenceRepository(IPreferenceRepository):
    """
    Read-only access to `custom_study_preferences`, always scoped to the owner.
    """

    TABLE = "custom_study_preferences"

    def __init__(self, supabase_client=None):
        # Allow optional injection for testing, otherwise lazy load
        self.supabase = supabase_client

    async def get_client(self):
        if self.supabase is None:
            from app.infrastructure.supabase.client import get_async_supabase_client

            self.supabase = await get_async_supabase_client()
        return self.supabase

    async def fetch_preference(self, preference_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        client = await self.get_client()
        try:
            response = await (
                client.table(self.TABLE)
                .select("*")
                .eq("id", str(preference_id))
                .eq("user_id", str(user_id))
                .limit(1)
                .execute()
            )
        except APIError as exc:
            logger.error("preference_fetch_failed", preference_id=str(preference_id), error=exc.message)
            raise PersistenceError(f"Failed to load preferences: {exc.message}") from exc

        rows = response.data or []
        return rows[0] if rows else None
