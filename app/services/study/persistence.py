import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import structlog

from app.domain.exceptions import PersistenceError
from app.domain.repositories.study_repository import IStudyRepository
from app.domain.study.schemas import GeneratedSession, PlanOutline, UnitOutline
from app.infrastructure.observability.generation_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)


@dataclass
class UnitWriteResult:
    unit_index: int
    unit_id: Optional[str] = None
    persisted_session_indexes: list[int] = field(default_factory=list)
    failed_session_indexes: list[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.unit_id is not None


class PersistenceCoordinator:
    """
    Writes Study -> Unit -> Session rows.

    Study creation is fatal on failure. Unit and session writes are independent:
    a failure is logged and skipped, siblings are unaffected. Callers only hand
    over objects that already passed validation.
    """

    def __init__(self, repository: IStudyRepository):
        self._repository = repository

    @staticmethod
    def study_row(plan: PlanOutline, *, user_id: str, preference_id: str) -> Dict[str, Any]:
        return {
            "user_id": str(user_id),
            "preference_id": str(preference_id),
            "title": plan.title,
            "description": plan.summary,
            "total_units": len(plan.units),
            "completed_units": 0,
            "is_active": True,
        }

    @staticmethod
    def unit_row(unit_index: int, outline: UnitOutline) -> Dict[str, Any]:
        return {
            "unit_index": unit_index,
            "unit_type": outline.unit_type.value,
            "scope": outline.scope.value,
            "title": outline.title,
            "estimated_minutes": outline.estimated_minutes,
            "primary_passages": list(outline.primary_passages),
            "is_completed": False,
        }

    @staticmethod
    def session_row(session: GeneratedSession) -> Dict[str, Any]:
        row = session.model_dump(mode="json")
        row["is_completed"] = False
        return row

    async def create_study(self, plan: PlanOutline, *, user_id: str, preference_id: str) -> str:
        try:
            stored = await self._repository.insert_study(
                self.study_row(plan, user_id=user_id, preference_id=preference_id)
            )
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"Failed to create study: {compact_error(exc)}") from exc

        study_id = stored.get("id") if stored else None
        if not study_id:
            raise PersistenceError("Failed to create study: store returned no id")
        emit_event(logger, "study_created", study_id=str(study_id), total_units=len(plan.units))
        return str(study_id)

    async def create_unit(self, study_id: str, unit_index: int, outline: UnitOutline) -> Optional[str]:
        try:
            stored = await self._repository.insert_unit(study_id, self.unit_row(unit_index, outline))
            unit_id = stored.get("id") if stored else None
            if not unit_id:
                raise PersistenceError("store returned no id")
        except Exception as exc:
            emit_event(
                logger,
                "unit_persistence_failed",
                level="error",
                study_id=study_id,
                unit_index=unit_index,
                error=compact_error(exc),
            )
            return None
        return str(unit_id)

    async def create_session(self, unit_id: str, session: GeneratedSession) -> bool:
        try:
            await self._repository.insert_session(unit_id, self.session_row(session))
        except Exception as exc:
            emit_event(
                logger,
                "session_persistence_failed",
                level="error",
                unit_id=unit_id,
                session_index=session.session_index,
                error=compact_error(exc),
            )
            return False
        return True

    async def persist_unit(
        self,
        study_id: str,
        unit_index: int,
        outline: UnitOutline,
        sessions: list[GeneratedSession],
        on_unit_created: Optional[Callable[[str], None]] = None,
    ) -> UnitWriteResult:
        """
        Writes the unit row, then its sessions concurrently.
        `on_unit_created` fires once the unit row is committed, before any session insert.
        """
        result = UnitWriteResult(unit_index=unit_index)
        unit_id = await self.create_unit(study_id, unit_index, outline)
        if unit_id is None:
            result.error = "unit insert failed"
            return result

        result.unit_id = unit_id
        if on_unit_created is not None:
            on_unit_created(unit_id)
        outcomes = await asyncio.gather(*(self.create_session(unit_id, session) for session in sessions))
        for session, ok in zip(sessions, outcomes):
            if ok:
                result.persisted_session_indexes.append(session.session_index)
            else:
                result.failed_session_indexes.append(session.session_index)
        return result

    async def deactivate_study(self, study_id: str) -> bool:
        """Best effort: hides an empty study from active-study lookups."""
        try:
            await self._repository.set_study_active(study_id, False)
        except Exception as exc:
            logger.warning("study_deactivation_failed", study_id=study_id, error=compact_error(exc))
            return False
        return True
