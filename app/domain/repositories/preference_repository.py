from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class IPreferenceRepository(ABC):
    @abstractmethod
    async def fetch_preference(self, preference_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        """Return the preference row matching both id and owner, or None."""
        pass
