from typing import Any, Dict, List, Optional

import structlog
from postgrest.exceptions import APIError

from app.domain.exceptions import DuplicateRecordError, PersistenceError
from app.domain.repositories.study_repository import IStudyRepository

logger = structlog.get_logger(__name__)

UNIQUE_VIOLATION = "23505"
STUDY_TREE_SELECT = "*, units:custom_study_units(*, sessions:custom_study_sessions(*))"


def _to_persistence_error(exc: APIError, action: str) -> PersistenceError:
    details = {"code": exc.code, "hint": exc.hint, "details": exc.details}
    if exc.code == UNIQUE_VIOLATION:
        return DuplicateRecordError(f"{action} rejected by uniqueness constraint: {exc.message}", details=details)
    return PersistenceError(f"{action} failed: {exc.message}", details=details)


class SupabaseStudyRepository(IStudyRepository):
    """
    Supabase-backed implementation of IStudyRepository.

    Tables: `custom_studies` -> `custom_study_units` -> `custom_study_sessions`.
    Every insert is an independent statement; the `(study_id, unit_index)` and
    `(unit_id, session_index)` unique constraints reject duplicates.
    """

    STUDIES_TABLE = "custom_studies"
    UNITS_TABLE = "custom_study_units"
    SESSIONS_TABLE = "custom_study_sessions"

    def __init__(self, supabase_client=None):
        self.supabase = supabase_client

    async def get_client(self):
        if self.supabase is None:
            from app.infrastructure.supabase.client import get_async_supabase_client

            self.supabase = await get_async_supabase_client()
        return self.supabase

    async def _insert(self, table: str, row: Dict[str, Any], action: str) -> Dict[str, Any]:
        client = await self.get_client()
        try:
            response = await client.table(table).insert(row).execute()
        except APIError as exc:
            raise _to_persistence_error(exc, action) from exc

        rows = response.data or []
        if not rows:
            raise PersistenceError(f"{action} returned no row")
        return rows[0]

    async def insert_study(self, row: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(self.STUDIES_TABLE, row, "Study insert")

    async def insert_unit(self, study_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(self.UNITS_TABLE, {**row, "study_id": str(study_id)}, "Unit insert")

    async def insert_session(self, unit_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        return await self._insert(self.SESSIONS_TABLE, {**row, "unit_id": str(unit_id)}, "Session insert")

    async def set_study_active(self, study_id: str, is_active: bool) -> None:
        client = await self.get_client()
        try:
            await (
                client.table(self.STUDIES_TABLE)
                .update({"is_active": bool(is_active)})
                .eq("id", str(study_id))
                .execute()
            )
        except APIError as exc:
            raise _to_persistence_error(exc, "Study update") from exc

    async def get_study_tree(self, study_id: str) -> Optional[Dict[str, Any]]:
        client = await self.get_client()
        try:
            response = await (
                client.table(self.STUDIES_TABLE)
                .select(STUDY_TREE_SELECT)
                .eq("id", str(study_id))
                .limit(1)
                .execute()
            )
        except APIError as exc:
            raise _to_persistence_error(exc, "Study lookup") from exc

        rows = response.data or []
        return rows[0] if rows else None

    async def list_active_studies(self, user_id: str, *, with_units: bool = False) -> List[Dict[str, Any]]:
        client = await self.get_client()
        try:
            response = await (
                client.table(self.STUDIES_TABLE)
                .select(STUDY_TREE_SELECT if with_units else "*")
                .eq("user_id", str(user_id))
                .eq("is_active", True)
                .order("created_at", desc=True)
                .execute()
            )
        except APIError as exc:
            raise _to_persistence_error(exc, "Active study lookup") from exc

        logger.debug("active_studies_loaded", count=len(response.data or []))
        return list(response.data or [])
