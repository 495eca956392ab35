"""
Boundary schemas for the study generation pipeline.

Backend output is untrusted text: every generated object (Tags, PlanOutline,
GeneratedSession) is validated against these models before anything downstream
sees it. Rules that depend on the user's preferences are applied through the
pydantic validation context (see `app.domain.study.validation`).
"""
from typing import Annotated, Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PositiveInt,
    StringConstraints,
    ValidationInfo,
    field_validator,
    model_validator,
)

from app.domain.study.types import (
    PLAN_SUMMARY_MAX_WORDS,
    SESSION_CONTEXT_MAX_WORDS,
    UnitScope,
    UnitType,
    normalize_label,
    session_count_for_scope,
    word_count,
)
from app.domain.study.vocabulary import (
    CANONICAL_TAG_SET,
    MAX_RELATED_TAGS,
    SENSITIVITY_FLAG_SET,
)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

INCLUDE_QUESTIONS_CONTEXT_KEY = "include_discussion_questions"
_BULLET_PREFIXES = ("•", "-", "*", "·")


def _clean_text_list(value: Any, *, strip_bullets: bool = False) -> Any:
    if value is None or not isinstance(value, (list, tuple)):
        return value
    cleaned: list[str] = []
    for item in value:
        if not isinstance(item, str):
            cleaned.append(item)
            continue
        text = item.strip()
        if strip_bullets:
            while text and text.startswith(_BULLET_PREFIXES):
                text = text[1:].strip()
        if text:
            cleaned.append(text)
    return cleaned


def _normalize_tag_list(value: Any) -> Any:
    if value is None or not isinstance(value, (list, tuple)):
        return value
    seen: list[str] = []
    for item in value:
        label = normalize_label(item)
        if label and label not in seen:
            seen.append(label)
    return seen


class PreferenceRecord(BaseModel):
    """A stored preference row (read-only input)."""

    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: str
    goals: List[str]
    topics: List[str]
    minutes_per_session: PositiveInt = 15
    translation: NonEmptyStr = "NIV"
    reading_level: NonEmptyStr = "conversational"
    include_discussion_questions: bool = True

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _coerce_identifier(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("goals", "topics", mode="before")
    @classmethod
    def _clean_interests(cls, value: Any) -> Any:
        return _clean_text_list(value)

    @field_validator("include_discussion_questions", mode="before")
    @classmethod
    def _default_questions_flag(cls, value: Any) -> Any:
        return True if value is None else value


class Tags(BaseModel):
    primary_tags: List[str]
    related_tags: List[str]
    sensitivity_flags: List[str]

    @field_validator("primary_tags", "related_tags", "sensitivity_flags", mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        return _normalize_tag_list(value)

    @field_validator("primary_tags")
    @classmethod
    def _primary_in_vocabulary(cls, value: List[str]) -> List[str]:
        unknown = [tag for tag in value if tag not in CANONICAL_TAG_SET]
        if unknown:
            raise ValueError(f"primary_tags outside canonical vocabulary: {unknown}")
        return value

    @field_validator("related_tags")
    @classmethod
    def _related_bounded(cls, value: List[str]) -> List[str]:
        if len(value) > MAX_RELATED_TAGS:
            raise ValueError(f"related_tags allows at most {MAX_RELATED_TAGS} entries, got {len(value)}")
        return value

    @field_validator("sensitivity_flags")
    @classmethod
    def _flags_in_vocabulary(cls, value: List[str]) -> List[str]:
        unknown = [flag for flag in value if flag not in SENSITIVITY_FLAG_SET]
        if unknown:
            raise ValueError(f"sensitivity_flags outside sensitivity vocabulary: {unknown}")
        return value


class UnitOutline(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: Optional[int] = None
    unit_type: UnitType = Field(validation_alias=AliasChoices("type", "unit_type"))
    scope: UnitScope
    title: NonEmptyStr
    primary_passages: List[NonEmptyStr] = Field(min_length=1)
    secondary_passages: List[NonEmptyStr] = Field(default_factory=list)
    estimated_minutes: PositiveInt
    learning_goal: NonEmptyStr

    @field_validator("unit_type", "scope", mode="before")
    @classmethod
    def _normalize_enum_label(cls, value: Any) -> Any:
        if isinstance(value, str):
            return normalize_label(value)
        return value

    @field_validator("primary_passages", "secondary_passages", mode="before")
    @classmethod
    def _clean_passages(cls, value: Any) -> Any:
        return _clean_text_list(value)

    @property
    def session_count(self) -> int:
        return session_count_for_scope(self.scope)


class PlanOutline(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: NonEmptyStr = Field(validation_alias=AliasChoices("title", "plan_title"))
    summary: str = ""
    units: List[UnitOutline] = Field(min_length=1)

    @field_validator("summary", mode="before")
    @classmethod
    def _summary_text(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("summary")
    @classmethod
    def _clip_summary(cls, value: str) -> str:
        words = value.split()
        if len(words) <= PLAN_SUMMARY_MAX_WORDS:
            return value.strip()
        return " ".join(words[:PLAN_SUMMARY_MAX_WORDS])

    def scope_counts(self) -> dict[UnitScope, int]:
        counts = {scope: 0 for scope in UnitScope}
        for unit in self.units:
            counts[unit.scope] += 1
        return counts

    @property
    def deep_dive_count(self) -> int:
        return sum(1 for unit in self.units if unit.scope.is_deep_dive)


class GeneratedSession(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_index: int = Field(default=0, ge=0)
    title: NonEmptyStr
    estimated_minutes: PositiveInt
    passages: List[NonEmptyStr] = Field(min_length=1)
    context: NonEmptyStr
    key_insights: List[NonEmptyStr] = Field(min_length=2, max_length=3)
    reflection_questions: List[NonEmptyStr] = Field(default_factory=list, validate_default=True)
    prayer_prompt: NonEmptyStr
    action_step: NonEmptyStr
    memory_verse: Optional[str] = None
    cross_references: List[NonEmptyStr] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _flatten_session_meta(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("session_meta"), dict):
            return data
        flattened = dict(data)
        meta = flattened.pop("session_meta")
        for key in ("session_index", "title", "estimated_minutes"):
            if key in meta and key not in flattened:
                flattened[key] = meta[key]
        return flattened

    @field_validator("passages", "cross_references", mode="before")
    @classmethod
    def _clean_references(cls, value: Any) -> Any:
        if value is None:
            return []
        return _clean_text_list(value)

    @field_validator("context")
    @classmethod
    def _context_word_limit(cls, value: str) -> str:
        words = word_count(value)
        if words > SESSION_CONTEXT_MAX_WORDS:
            raise ValueError(f"context must be at most {SESSION_CONTEXT_MAX_WORDS} words, got {words}")
        return value

    @field_validator("key_insights", "reflection_questions", mode="before")
    @classmethod
    def _clean_bullets(cls, value: Any) -> Any:
        if value is None:
            return []
        return _clean_text_list(value, strip_bullets=True)

    @field_validator("reflection_questions")
    @classmethod
    def _questions_follow_preference(cls, value: List[str], info: ValidationInfo) -> List[str]:
        context = info.context or {}
        if INCLUDE_QUESTIONS_CONTEXT_KEY not in context:
            return value
        if not context[INCLUDE_QUESTIONS_CONTEXT_KEY]:
            return []
        if not 3 <= len(value) <= 6:
            raise ValueError(f"reflection_questions must have 3-6 items, got {len(value)}")
        return value

    @field_validator("memory_verse", mode="before")
    @classmethod
    def _blank_memory_verse(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value


# --- Durable records (read side) ---


class SessionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    unit_id: str
    session_index: int
    title: str
    estimated_minutes: Optional[int] = None
    passages: List[str] = Field(default_factory=list)
    context: Optional[str] = None
    key_insights: List[str] = Field(default_factory=list)
    reflection_questions: List[str] = Field(default_factory=list)
    prayer_prompt: Optional[str] = None
    action_step: Optional[str] = None
    memory_verse: Optional[str] = None
    cross_references: List[str] = Field(default_factory=list)
    is_completed: bool = False

    @field_validator("passages", "key_insights", "reflection_questions", "cross_references", mode="before")
    @classmethod
    def _null_lists(cls, value: Any) -> Any:
        return [] if value is None else value


class UnitRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    study_id: str
    unit_index: int
    unit_type: Optional[str] = None
    scope: str
    title: str
    estimated_minutes: Optional[int] = None
    primary_passages: List[str] = Field(default_factory=list)
    is_completed: bool = False
    sessions: List[SessionRecord] = Field(default_factory=list)

    @field_validator("sessions", mode="after")
    @classmethod
    def _order_sessions(cls, value: List[SessionRecord]) -> List[SessionRecord]:
        return sorted(value, key=lambda session: session.session_index)


class StudyRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    preference_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    total_units: int
    completed_units: int = 0
    is_active: bool = True
    created_at: Optional[str] = None
    units: List[UnitRecord] = Field(default_factory=list)

    @field_validator("completed_units", mode="before")
    @classmethod
    def _null_completed(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("units", mode="after")
    @classmethod
    def _order_units(cls, value: List[UnitRecord]) -> List[UnitRecord]:
        return sorted(value, key=lambda unit: unit.unit_index)


class StudyCompleteness(BaseModel):
    study_id: str
    total_units: int
    persisted_units: int
    expected_sessions: int
    persisted_sessions: int
    missing_unit_indexes: List[int] = Field(default_factory=list)
    is_partial: bool
