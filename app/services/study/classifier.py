from typing import Optional, Tuple

import structlog

from app.core.ai_models import AIModelConfig
from app.domain.exceptions import ClassificationError, ConfigurationError
from app.domain.interfaces.generation_backend import IGenerationBackend
from app.domain.prompts.study import StudyPrompts
from app.domain.study.schemas import PreferenceRecord, Tags
from app.domain.study.validation import DecodeFailure, decode_structured
from app.infrastructure.observability.generation_logging import compact_error, emit_event

logger = structlog.get_logger(__name__)


class ClassifierStage:
    """
    Maps free-text goals/topics onto the canonical tag vocabulary.

    A rejected answer (call failure, malformed JSON, schema violation) is retried
    exactly once with a stricter prompt; a second rejection is fatal.
    """

    MAX_ATTEMPTS = 2

    def __init__(
        self,
        backend: IGenerationBackend,
        *,
        temperature: float = AIModelConfig.DEFAULT_TEMPERATURE_CLASSIFIER,
    ):
        self._backend = backend
        self._temperature = temperature

    async def classify(self, preferences: PreferenceRecord) -> Tags:
        prompt = StudyPrompts.classifier_user(preferences)
        reasons: list[str] = []

        for attempt in range(1, self.MAX_ATTEMPTS + 1):
            tags, reason = await self._attempt(prompt)
            if tags is not None:
                return tags

            reasons.append(reason or "unknown")
            emit_event(logger, "classifier_attempt_failed", level="warning", attempt=attempt, reason=reason)
            if attempt < self.MAX_ATTEMPTS:
                emit_event(logger, "classifier_retry", attempt=attempt + 1)
                prompt = StudyPrompts.classifier_user_strict(preferences, reason or "invalid output")

        raise ClassificationError(
            f"Classifier output rejected after {self.MAX_ATTEMPTS} attempts: {reasons[-1]}",
            details={"reasons": reasons},
        )

    async def _attempt(self, prompt: str) -> Tuple[Optional[Tags], Optional[str]]:
        try:
            raw = await self._backend.generate(
                prompt,
                Tags,
                system_prompt=StudyPrompts.CLASSIFIER_SYSTEM,
                temperature=self._temperature,
            )
        except ConfigurationError:
            raise
        except Exception as exc:
            return None, compact_error(exc)

        decoded = decode_structured(raw, Tags)
        if isinstance(decoded, DecodeFailure):
            return None, decoded.summary()
        return decoded.value, None
