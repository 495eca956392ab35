from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class IStudyRepository(ABC):
    """
    Write and read path for studies, units and sessions.

    Inserts return the stored row (including its generated `id`). Implementations
    raise `PersistenceError` on failure and `DuplicateRecordError` when the
    `(study_id, unit_index)` or `(unit_id, session_index)` uniqueness constraint
    rejects a row.
    """

    @abstractmethod
    async def insert_study(self, row: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def insert_unit(self, study_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def insert_session(self, unit_id: str, row: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def set_study_active(self, study_id: str, is_active: bool) -> None:
        pass

    @abstractmethod
    async def get_study_tree(self, study_id: str) -> Optional[Dict[str, Any]]:
        """Study row with nested `units`, each with nested `sessions`."""
        pass

    @abstractmethod
    async def list_active_studies(self, user_id: str, *, with_units: bool = False) -> List[Dict[str, Any]]:
        """Active studies for a user, newest first."""
        pass
