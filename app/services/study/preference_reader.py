import structlog

from app.domain.exceptions import InvalidInputError, NotFoundError
from app.domain.repositories.preference_repository import IPreferenceRepository
from app.domain.study.schemas import PreferenceRecord
from app.domain.study.validation import DecodeFailure, decode_structured

logger = structlog.get_logger(__name__)


class PreferenceReader:
    """Loads one preference record by id, scoped to its owner."""

    def __init__(self, repository: IPreferenceRepository):
        self._repository = repository

    async def read(self, preference_id: str, user_id: str) -> PreferenceRecord:
        if not preference_id or not user_id:
            raise InvalidInputError("Missing preference_id or user_id")

        row = await self._repository.fetch_preference(str(preference_id), str(user_id))
        if not row:
            raise NotFoundError("Preferences not found", details={"preference_id": str(preference_id)})

        decoded = decode_structured(row, PreferenceRecord)
        if isinstance(decoded, DecodeFailure):
            logger.warning("preference_record_invalid", preference_id=str(preference_id), errors=decoded.errors)
            raise decoded.to_error("Stored preferences are incomplete")
        return decoded.value
