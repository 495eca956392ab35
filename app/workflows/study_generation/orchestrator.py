import asyncio
import uuid
from typing import Optional

import structlog

from app.core.settings import settings
from app.domain.exceptions import (
    InvalidInputError,
    PartialUnitError,
    PersistenceError,
    StudyGenerationError,
    UnitGenerationError,
)
from app.domain.interfaces.generation_backend import IGenerationBackend
from app.domain.repositories.preference_repository import IPreferenceRepository
from app.domain.repositories.study_repository import IStudyRepository
from app.domain.study.schemas import PlanOutline, PreferenceRecord, UnitOutline
from app.domain.study.types import RunState, UnitOutcome
from app.infrastructure.concurrency.generation_limiter import BoundedGenerationBackend, GenerationLimiter
from app.infrastructure.observability.context_vars import bind_context, clear_context
from app.infrastructure.observability.generation_logging import compact_error, elapsed_ms, emit_event, perf_now
from app.services.study.classifier import ClassifierStage
from app.services.study.persistence import PersistenceCoordinator
from app.services.study.planner import PlannerStage
from app.services.study.preference_reader import PreferenceReader
from app.services.study.unit_expander import UnitExpander
from app.workflows.study_generation.state import StudyGenerationResult, StudyRun, UnitReport

logger = structlog.get_logger(__name__)


class StudyGenerationOrchestrator:
    """
    Sequences preference read -> classify -> plan -> create study -> per-unit
    expand+persist. Each run gets its own limiter, so no state is shared across
    requests beyond the store.
    """

    def __init__(
        self,
        backend: IGenerationBackend,
        preference_repository: IPreferenceRepository,
        study_repository: IStudyRepository,
        *,
        max_concurrency: Optional[int] = None,
        call_timeout_seconds: Optional[float] = None,
        fanout_deadline_seconds: Optional[float] = None,
        plan_size: Optional[int] = None,
        deep_dive_units: Optional[int] = None,
        enforce_composition: Optional[bool] = None,
    ):
        self._backend = backend
        self._preference_repository = preference_repository
        self._study_repository = study_repository

        self.max_concurrency = max(1, int(max_concurrency or settings.GENERATION_MAX_CONCURRENCY))
        self.call_timeout_seconds = (
            call_timeout_seconds if call_timeout_seconds is not None else settings.GENERATION_CALL_TIMEOUT_SECONDS
        )
        self.fanout_deadline_seconds = (
            fanout_deadline_seconds
            if fanout_deadline_seconds is not None
            else settings.STUDY_FANOUT_DEADLINE_SECONDS
        )
        self.plan_size = plan_size if plan_size is not None else settings.STUDY_PLAN_SIZE
        self.deep_dive_units = deep_dive_units if deep_dive_units is not None else settings.STUDY_DEEP_DIVE_UNITS
        self.enforce_composition = (
            enforce_composition if enforce_composition is not None else settings.STUDY_ENFORCE_COMPOSITION
        )

    async def run(self, preference_id: Optional[str], user_id: Optional[str]) -> StudyGenerationResult:
        run_id = str(uuid.uuid4())
        bind_context(run_id=run_id, user_id=str(user_id) if user_id else None, preference_id=preference_id)
        try:
            return await self._run(run_id, preference_id, user_id)
        finally:
            clear_context()

    async def _run(
        self,
        run_id: str,
        preference_id: Optional[str],
        user_id: Optional[str],
    ) -> StudyGenerationResult:
        started = perf_now()
        run = StudyRun(run_id)
        result = StudyGenerationResult(run_id=run_id)
        emit_event(logger, "study_generation_started", preference_id=preference_id)

        if not preference_id or not user_id:
            return self._fail(run, result, InvalidInputError("Missing preference_id or user_id"), started)

        limiter = GenerationLimiter(self.max_concurrency)
        backend = BoundedGenerationBackend(self._backend, limiter, self.call_timeout_seconds)
        reader = PreferenceReader(self._preference_repository)
        classifier = ClassifierStage(backend)
        planner = PlannerStage(
            backend,
            plan_size=self.plan_size,
            deep_dive_units=self.deep_dive_units,
            enforce_composition=self.enforce_composition,
        )
        coordinator = PersistenceCoordinator(self._study_repository)

        try:
            self._transition(run, RunState.FETCHING_PREFERENCES)
            preferences = await reader.read(str(preference_id), str(user_id))

            self._transition(run, RunState.CLASSIFYING)
            tags = await classifier.classify(preferences)

            self._transition(run, RunState.PLANNING)
            plan = await planner.plan(preferences, tags)

            self._transition(run, RunState.PERSISTING_STUDY)
            study_id = await coordinator.create_study(
                plan, user_id=preferences.user_id, preference_id=preferences.id
            )
        except StudyGenerationError as exc:
            result.peak_in_flight = limiter.peak_in_flight
            return self._fail(run, result, exc, started)
        except Exception as exc:
            result.peak_in_flight = limiter.peak_in_flight
            logger.exception("study_generation_unexpected_error", error=compact_error(exc))
            return self._fail(run, result, StudyGenerationError(compact_error(exc)), started)

        bind_context(study_id=study_id)
        result.study_id = study_id
        result.title = plan.title
        result.total_units = len(plan.units)
        result.units = [UnitReport.from_outline(index, unit) for index, unit in enumerate(plan.units)]

        self._transition(run, RunState.EXPANDING_UNITS)
        await self._fan_out(run, result, plan, preferences, UnitExpander(backend), coordinator)
        result.peak_in_flight = limiter.peak_in_flight

        if result.persisted_units == 0:
            await coordinator.deactivate_study(study_id)
            return self._fail(
                run,
                result,
                PersistenceError(f"Study {study_id} has no persisted units", code="EMPTY_STUDY"),
                started,
            )

        self._transition(run, RunState.COMPLETED)
        result.state = run.state
        emit_event(
            logger,
            "study_generation_completed",
            study_id=study_id,
            total_units=result.total_units,
            persisted_units=result.persisted_units,
            is_partial=result.is_partial,
            peak_in_flight=result.peak_in_flight,
            duration_ms=elapsed_ms(started),
        )
        return result

    async def _fan_out(
        self,
        run: StudyRun,
        result: StudyGenerationResult,
        plan: PlanOutline,
        preferences: PreferenceRecord,
        expander: UnitExpander,
        coordinator: PersistenceCoordinator,
    ) -> None:
        study_id = result.study_id
        unsettled = len(plan.units)

        def _expansion_settled() -> None:
            nonlocal unsettled
            unsettled -= 1
            if unsettled == 0 and run.state is RunState.EXPANDING_UNITS:
                self._transition(run, RunState.PERSISTING_UNITS)

        async def _unit_pipeline(report: UnitReport, outline: UnitOutline) -> None:
            try:
                expansion = await expander.expand(report.unit_index, outline, preferences)
            except Exception as exc:
                _expansion_settled()
                report.outcome = UnitOutcome.SKIPPED
                report.record_error(
                    UnitGenerationError(compact_error(exc), unit_index=report.unit_index)
                )
                emit_event(
                    logger,
                    "unit_generation_failed",
                    level="error",
                    unit_index=report.unit_index,
                    error=report.error,
                )
                return
            _expansion_settled()

            if not expansion.succeeded:
                report.outcome = UnitOutcome.SKIPPED
                report.failed_session_indexes = list(expansion.failed_session_indexes)
                report.record_error(expansion.to_error())
                emit_event(
                    logger,
                    "unit_generation_failed",
                    level="error",
                    unit_index=report.unit_index,
                    attempts=expansion.attempts,
                    error=report.error,
                )
                return

            def _unit_created(unit_id: str) -> None:
                report.unit_id = unit_id

            written = await coordinator.persist_unit(
                study_id, report.unit_index, outline, expansion.sessions, on_unit_created=_unit_created
            )
            if not written.persisted:
                report.outcome = UnitOutcome.SKIPPED
                report.record_error(PersistenceError(f"Unit {report.unit_index} was not persisted"))
                return

            report.unit_id = written.unit_id
            report.persisted_session_indexes = list(written.persisted_session_indexes)
            report.failed_session_indexes = sorted(
                set(expansion.failed_session_indexes) | set(written.failed_session_indexes)
            )
            if not report.failed_session_indexes:
                report.outcome = UnitOutcome.PERSISTED
                return

            report.outcome = UnitOutcome.PARTIAL
            partial = PartialUnitError(
                f"Unit {report.unit_index} persisted without sessions {report.failed_session_indexes}",
                unit_index=report.unit_index,
                failed_session_indexes=report.failed_session_indexes,
            )
            report.record_error(partial)
            emit_event(
                logger,
                "unit_generation_partial",
                level="warning",
                unit_index=report.unit_index,
                unit_id=report.unit_id,
                failed_session_indexes=report.failed_session_indexes,
            )

        tasks = [
            asyncio.create_task(_unit_pipeline(report, outline))
            for report, outline in zip(result.units, plan.units)
        ]
        deadline = self.fanout_deadline_seconds if (self.fanout_deadline_seconds or 0) > 0 else None
        done, pending = await asyncio.wait(tasks, timeout=deadline)

        if pending:
            emit_event(
                logger,
                "study_fanout_deadline_exceeded",
                level="warning",
                deadline_seconds=deadline,
                pending_units=len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for report in result.units:
                if report.outcome is UnitOutcome.PENDING:
                    report.outcome = UnitOutcome.ABANDONED
                    if report.unit_id is not None:
                        report.record_error(
                            PartialUnitError(
                                f"Unit {report.unit_index} was cut off by the fan-out deadline; "
                                "check study completeness for its stored sessions",
                                unit_index=report.unit_index,
                                failed_session_indexes=[],
                            )
                        )

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("unit_pipeline_crashed", error=compact_error(task.exception()))

        for report in result.units:
            if report.outcome is UnitOutcome.PENDING:
                report.outcome = UnitOutcome.SKIPPED

    def _transition(self, run: StudyRun, target: RunState) -> None:
        previous = run.advance(target)
        emit_event(logger, "study_stage_transition", level="debug", from_state=previous.value, to_state=target.value)

    def _fail(
        self,
        run: StudyRun,
        result: StudyGenerationResult,
        exc: StudyGenerationError,
        started: float,
    ) -> StudyGenerationResult:
        failed_at = run.state
        run.advance(RunState.FAILED)
        result.state = run.state
        result.failed_at = failed_at
        result.error = exc
        emit_event(
            logger,
            "study_generation_failed",
            level="error",
            failed_at=failed_at.value,
            code=exc.code,
            error=exc.message,
            study_id=result.study_id,
            duration_ms=elapsed_ms(started),
        )
        return result
