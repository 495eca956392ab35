from typing import Optional

import structlog

from app.domain.exceptions import InvalidInputError, NotFoundError
from app.domain.repositories.study_repository import IStudyRepository
from app.domain.study.schemas import StudyCompleteness, StudyRecord
from app.domain.study.types import session_count_for_scope

logger = structlog.get_logger(__name__)


class StudyQueryService:
    """Read side over persisted studies."""

    def __init__(self, repository: IStudyRepository):
        self._repository = repository

    async def get_active_study(self, user_id: str) -> Optional[StudyRecord]:
        """Newest active study for the user, with units and sessions ordered by index."""
        if not user_id:
            raise InvalidInputError("Missing user_id")
        rows = await self._repository.list_active_studies(str(user_id), with_units=True)
        if not rows:
            return None
        return StudyRecord.model_validate(rows[0])

    async def can_generate_new_study(self, user_id: str) -> bool:
        if not user_id:
            raise InvalidInputError("Missing user_id")
        rows = await self._repository.list_active_studies(str(user_id))
        if not rows:
            return True
        active = StudyRecord.model_validate(rows[0])
        return active.completed_units >= active.total_units

    async def get_completeness(self, study_id: str) -> StudyCompleteness:
        if not study_id:
            raise InvalidInputError("Missing study_id")
        row = await self._repository.get_study_tree(str(study_id))
        if not row:
            raise NotFoundError("Study not found", details={"study_id": str(study_id)})

        study = StudyRecord.model_validate(row)
        present = {unit.unit_index for unit in study.units}
        expected_sessions = 0
        persisted_sessions = 0
        for unit in study.units:
            try:
                expected_sessions += session_count_for_scope(unit.scope)
            except (KeyError, ValueError):
                expected_sessions += len(unit.sessions)
            persisted_sessions += len(unit.sessions)

        missing = [index for index in range(study.total_units) if index not in present]
        completeness = StudyCompleteness(
            study_id=study.id,
            total_units=study.total_units,
            persisted_units=len(study.units),
            expected_sessions=expected_sessions,
            persisted_sessions=persisted_sessions,
            missing_unit_indexes=missing,
            is_partial=bool(missing) or persisted_sessions < expected_sessions,
        )
        logger.debug("study_completeness_computed", **completeness.model_dump())
        return completeness
