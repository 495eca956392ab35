from enum import Enum


class UnitType(str, Enum):
    DEVOTIONAL = "devotional"
    INDUCTIVE = "inductive"
    CHARACTER = "character"
    THEME = "theme"
    WORD_STUDY = "word-study"


class UnitScope(str, Enum):
    SINGLE_DAY = "single-day"
    DEEP_DIVE_2DAYS = "deep-dive-2days"
    DEEP_DIVE_3DAYS = "deep-dive-3days"

    @property
    def is_deep_dive(self) -> bool:
        return self is not UnitScope.SINGLE_DAY


SESSION_COUNT_BY_SCOPE: dict[UnitScope, int] = {
    UnitScope.SINGLE_DAY: 1,
    UnitScope.DEEP_DIVE_2DAYS: 2,
    UnitScope.DEEP_DIVE_3DAYS: 3,
}

# Word budget per session body, by scope.
SESSION_WORD_BUDGET: dict[UnitScope, int] = {
    UnitScope.SINGLE_DAY: 450,
    UnitScope.DEEP_DIVE_2DAYS: 900,
    UnitScope.DEEP_DIVE_3DAYS: 900,
}

PLAN_SUMMARY_MAX_WORDS = 80
SESSION_CONTEXT_MAX_WORDS = 100


def word_count(text: str) -> int:
    return len(text.split())


def session_count_for_scope(scope: UnitScope | str) -> int:
    return SESSION_COUNT_BY_SCOPE[UnitScope(scope)]


def normalize_label(value: object) -> str:
    """'Word Study' / 'word_study' / ' WORD-STUDY ' -> 'word-study'."""
    if isinstance(value, Enum):
        value = value.value
    text = str(value or "").strip().lower()
    return "-".join(text.replace("_", " ").split())


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING_PREFERENCES = "fetching_preferences"
    CLASSIFYING = "classifying"
    PLANNING = "planning"
    PERSISTING_STUDY = "persisting_study"
    EXPANDING_UNITS = "expanding_units"
    PERSISTING_UNITS = "persisting_units"
    COMPLETED = "completed"
    FAILED = "failed"


class UnitOutcome(str, Enum):
    PENDING = "pending"
    PERSISTED = "persisted"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"
