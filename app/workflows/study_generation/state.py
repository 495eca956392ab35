"""
Run state for one study generation.

The run is an explicit state machine with a phase barrier at PERSISTING_STUDY:
failures up to and including study creation end the run with no rows; after
that, unit failures are recorded on per-unit reports.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.domain.exceptions import StudyGenerationError
from app.domain.study.schemas import UnitOutline
from app.domain.study.types import RunState, UnitOutcome


class InvalidStateTransition(StudyGenerationError):
    code = "INVALID_STATE_TRANSITION"


ALLOWED_TRANSITIONS: Dict[RunState, frozenset] = {
    RunState.IDLE: frozenset({RunState.FETCHING_PREFERENCES, RunState.FAILED}),
    RunState.FETCHING_PREFERENCES: frozenset({RunState.CLASSIFYING, RunState.FAILED}),
    RunState.CLASSIFYING: frozenset({RunState.PLANNING, RunState.FAILED}),
    RunState.PLANNING: frozenset({RunState.PERSISTING_STUDY, RunState.FAILED}),
    RunState.PERSISTING_STUDY: frozenset({RunState.EXPANDING_UNITS, RunState.FAILED}),
    # the fan-out deadline can end a run before every expansion settled
    RunState.EXPANDING_UNITS: frozenset({RunState.PERSISTING_UNITS, RunState.COMPLETED, RunState.FAILED}),
    RunState.PERSISTING_UNITS: frozenset({RunState.COMPLETED, RunState.FAILED}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


class StudyRun:
    def __init__(self, run_id: str):
        self.run_id = run_id
        self.state = RunState.IDLE
        self.history: List[RunState] = [RunState.IDLE]

    @property
    def is_terminal(self) -> bool:
        return self.state in (RunState.COMPLETED, RunState.FAILED)

    def can_advance(self, target: RunState) -> bool:
        return target in ALLOWED_TRANSITIONS[self.state]

    def advance(self, target: RunState) -> RunState:
        if not self.can_advance(target):
            raise InvalidStateTransition(
                f"Illegal transition {self.state.value} -> {target.value}",
                details={"run_id": self.run_id},
            )
        previous = self.state
        self.state = target
        self.history.append(target)
        return previous


@dataclass
class UnitReport:
    unit_index: int
    title: str
    scope: str
    session_count: int
    outcome: UnitOutcome = UnitOutcome.PENDING
    unit_id: Optional[str] = None
    persisted_session_indexes: List[int] = field(default_factory=list)
    failed_session_indexes: List[int] = field(default_factory=list)
    error_code: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_outline(cls, unit_index: int, outline: UnitOutline) -> "UnitReport":
        return cls(
            unit_index=unit_index,
            title=outline.title,
            scope=outline.scope.value,
            session_count=outline.session_count,
        )

    @property
    def persisted(self) -> bool:
        if self.outcome is UnitOutcome.ABANDONED:
            return self.unit_id is not None
        return self.outcome in (UnitOutcome.PERSISTED, UnitOutcome.PARTIAL)

    def record_error(self, exc: Optional[StudyGenerationError]) -> None:
        if exc is None:
            return
        self.error_code = exc.code
        self.error = exc.message

    def as_dict(self) -> Dict[str, Any]:
        return {
            "unit_index": self.unit_index,
            "title": self.title,
            "scope": self.scope,
            "outcome": self.outcome.value,
            "unit_id": self.unit_id,
            "session_count": self.session_count,
            "persisted_session_indexes": list(self.persisted_session_indexes),
            "failed_session_indexes": list(self.failed_session_indexes),
            "error_code": self.error_code,
            "error": self.error,
        }


@dataclass
class StudyGenerationResult:
    run_id: str
    state: RunState = RunState.IDLE
    study_id: Optional[str] = None
    title: Optional[str] = None
    total_units: int = 0
    units: List[UnitReport] = field(default_factory=list)
    error: Optional[StudyGenerationError] = None
    failed_at: Optional[RunState] = None
    peak_in_flight: int = 0

    @property
    def success(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def persisted_units(self) -> int:
        return sum(1 for report in self.units if report.persisted)

    @property
    def is_partial(self) -> bool:
        if not self.success:
            return False
        if self.persisted_units < self.total_units:
            return True
        return any(report.outcome in (UnitOutcome.PARTIAL, UnitOutcome.ABANDONED) for report in self.units)

    def to_response(self) -> Dict[str, Any]:
        """Caller-facing contract. Partial runs still answer with success."""
        if self.success:
            return {"success": True, "study_id": self.study_id, "title": self.title}

        error = self.error or StudyGenerationError("Study generation failed")
        body: Dict[str, Any] = {"success": False, "error": error.message, "code": error.code}
        if self.study_id:
            body["study_id"] = self.study_id
        return body

    def report(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "study_id": self.study_id,
            "total_units": self.total_units,
            "persisted_units": self.persisted_units,
            "is_partial": self.is_partial,
            "peak_in_flight": self.peak_in_flight,
            "units": [report.as_dict() for report in self.units],
        }
