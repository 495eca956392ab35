from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from app.domain.study.schemas import StudyCompleteness, StudyRecord


class GenerateStudyRequest(BaseModel):
    """Both ids are optional here so that a missing one maps to INVALID_INPUT (400), not 422."""

    model_config = ConfigDict(extra="ignore")

    preference_id: str | None = None
    user_id: str | None = None

    @field_validator("preference_id", "user_id", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class GenerateStudyResponse(BaseModel):
    success: bool
    study_id: str | None = None
    title: str | None = None


class ActiveStudyResponse(BaseModel):
    study: StudyRecord | None = None


class EligibilityResponse(BaseModel):
    user_id: str
    can_generate: bool


class CompletenessResponse(StudyCompleteness):
    pass
