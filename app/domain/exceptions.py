from typing import Any, Optional


class StudyGenerationError(Exception):
    """
    Base error for the study generation pipeline.
    `code` is a stable machine-readable identifier; `message` is surfaced verbatim to callers.
    """

    code = "STUDY_GENERATION_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details


class InvalidInputError(StudyGenerationError):
    code = "INVALID_INPUT"


class NotFoundError(StudyGenerationError):
    code = "NOT_FOUND"


class ConfigurationError(StudyGenerationError):
    """Missing credentials or an unreachable/unconfigured backend."""

    code = "CONFIGURATION_ERROR"


class GenerationBackendError(StudyGenerationError):
    """The generation call itself failed or timed out."""

    code = "GENERATION_BACKEND_ERROR"


class ValidationError(StudyGenerationError):
    """Generation backend output failed schema validation."""

    code = "VALIDATION_ERROR"


class ClassificationError(ValidationError):
    code = "CLASSIFICATION_FAILED"


class PlanningError(ValidationError):
    code = "PLANNING_FAILED"


class UnitGenerationError(ValidationError):
    code = "UNIT_GENERATION_FAILED"

    def __init__(self, message: str, *, unit_index: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.unit_index = unit_index


class PersistenceError(StudyGenerationError):
    code = "PERSISTENCE_ERROR"


class DuplicateRecordError(PersistenceError):
    """A store uniqueness constraint rejected the insert."""

    code = "DUPLICATE_RECORD"


class PartialUnitError(StudyGenerationError):
    """Some sessions of a unit failed but the unit is still persisted."""

    code = "PARTIAL_UNIT"

    def __init__(self, message: str, *, unit_index: int, failed_session_indexes: list[int], **kwargs: Any):
        super().__init__(message, **kwargs)
        self.unit_index = unit_index
        self.failed_session_indexes = list(failed_session_indexes)
