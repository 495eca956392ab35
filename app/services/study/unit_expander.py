import asyncio
from dataclasses import dataclass, field
from typing import Optional, Union

import structlog

from app.core.ai_models import AIModelConfig
from app.domain.exceptions import PartialUnitError, UnitGenerationError
from app.domain.interfaces.generation_backend import IGenerationBackend
from app.domain.prompts.study import StudyPrompts
from app.domain.study.schemas import (
    INCLUDE_QUESTIONS_CONTEXT_KEY,
    GeneratedSession,
    PreferenceRecord,
    UnitOutline,
)
from app.domain.study.validation import DecodeFailure, decode_structured
from app.infrastructure.observability.generation_logging import compact_error, elapsed_ms, emit_event, perf_now

logger = structlog.get_logger(__name__)


@dataclass
class SessionAttempt:
    session_index: int
    session: Optional[GeneratedSession] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.session is not None


@dataclass
class UnitExpansion:
    """Validated sessions of one unit, ordered by dispatch index, plus what failed."""

    unit_index: int
    outline: UnitOutline
    sessions: list[GeneratedSession] = field(default_factory=list)
    failed_session_indexes: list[int] = field(default_factory=list)
    errors: dict[int, str] = field(default_factory=dict)
    attempts: int = 0

    @property
    def session_count(self) -> int:
        return self.outline.session_count

    @property
    def succeeded(self) -> bool:
        return bool(self.sessions)

    @property
    def is_partial(self) -> bool:
        return bool(self.sessions) and bool(self.failed_session_indexes)

    def to_error(self) -> Optional[Union[UnitGenerationError, PartialUnitError]]:
        if not self.sessions:
            return UnitGenerationError(
                f"Unit {self.unit_index} produced no valid sessions",
                unit_index=self.unit_index,
                details={"errors": self.errors},
            )
        if self.failed_session_indexes:
            return PartialUnitError(
                f"Unit {self.unit_index} is missing sessions {self.failed_session_indexes}",
                unit_index=self.unit_index,
                failed_session_indexes=self.failed_session_indexes,
                details={"errors": self.errors},
            )
        return None


class UnitExpander:
    """
    Generates all sessions of one unit concurrently.

    Session indexes are fixed at dispatch time. When more than half of a unit's
    sessions fail, the failed sessions are generated once more; a session that
    succeeded on either attempt is kept.
    """

    MAX_UNIT_ATTEMPTS = 2

    def __init__(
        self,
        backend: IGenerationBackend,
        *,
        temperature: float = AIModelConfig.DEFAULT_TEMPERATURE_SESSION,
    ):
        self._backend = backend
        self._temperature = temperature

    @staticmethod
    def needs_retry(failed: int, session_count: int) -> bool:
        return failed * 2 > session_count

    async def expand(self, unit_index: int, unit: UnitOutline, preferences: PreferenceRecord) -> UnitExpansion:
        session_count = unit.session_count
        started = perf_now()
        results: dict[int, SessionAttempt] = {}
        pending = list(range(session_count))
        attempt_number = 0

        while pending and attempt_number < self.MAX_UNIT_ATTEMPTS:
            attempt_number += 1
            for item in await self._expand_once(unit_index, unit, preferences, pending, session_count):
                results[item.session_index] = item
            pending = [index for index in range(session_count) if not results[index].ok]
            if not self.needs_retry(len(pending), session_count) or attempt_number >= self.MAX_UNIT_ATTEMPTS:
                break
            emit_event(
                logger,
                "unit_generation_retry",
                level="warning",
                unit_index=unit_index,
                failed_sessions=len(pending),
                session_count=session_count,
            )

        expansion = UnitExpansion(unit_index=unit_index, outline=unit, attempts=attempt_number)
        for index in range(session_count):
            item = results[index]
            if item.ok:
                expansion.sessions.append(item.session)
            else:
                expansion.failed_session_indexes.append(item.session_index)
                expansion.errors[item.session_index] = item.error or "unknown"

        logger.debug(
            "unit_expanded",
            unit_index=unit_index,
            sessions=len(expansion.sessions),
            session_count=session_count,
            attempts=attempt_number,
            duration_ms=elapsed_ms(started),
        )
        return expansion

    async def _expand_once(
        self,
        unit_index: int,
        unit: UnitOutline,
        preferences: PreferenceRecord,
        session_indexes: list[int],
        session_count: int,
    ) -> list[SessionAttempt]:
        tasks = [
            self._generate_session(unit_index, unit, preferences, session_index, session_count)
            for session_index in session_indexes
        ]
        # gather keeps dispatch order regardless of completion order
        return list(await asyncio.gather(*tasks))

    async def _generate_session(
        self,
        unit_index: int,
        unit: UnitOutline,
        preferences: PreferenceRecord,
        session_index: int,
        session_count: int,
    ) -> SessionAttempt:
        prompt = StudyPrompts.session_user(
            unit,
            preferences,
            session_index=session_index,
            session_count=session_count,
        )
        try:
            raw = await self._backend.generate(
                prompt,
                GeneratedSession,
                system_prompt=StudyPrompts.SESSION_SYSTEM,
                temperature=self._temperature,
            )
        except Exception as exc:
            emit_event(
                logger,
                "session_generation_failed",
                level="warning",
                unit_index=unit_index,
                session_index=session_index,
                error=compact_error(exc),
            )
            return SessionAttempt(session_index=session_index, error=compact_error(exc))

        decoded = decode_structured(
            raw,
            GeneratedSession,
            context={INCLUDE_QUESTIONS_CONTEXT_KEY: preferences.include_discussion_questions},
        )
        if isinstance(decoded, DecodeFailure):
            emit_event(
                logger,
                "session_generation_failed",
                level="warning",
                unit_index=unit_index,
                session_index=session_index,
                error=decoded.summary(),
            )
            return SessionAttempt(session_index=session_index, error=decoded.summary())

        session = decoded.value.model_copy(update={"session_index": session_index})
        return SessionAttempt(session_index=session_index, session=session)
