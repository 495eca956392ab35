"""
Structured Generation Engine - Constrained Decoding for LLM Outputs.

`StrictEngine` is the production generation backend: it asks an
`instructor`-patched async client for output shaped like a Pydantic schema.

Key Features:
- Exactly one validation attempt per call: retry policy on bad output belongs
  to the calling stage, not to the engine.
- Transient transport errors (rate limits, timeouts, 5xx) are retried with
  exponential backoff through tenacity.
- Failures are mapped onto the pipeline's error taxonomy:
  bad output -> ValidationError, transport -> GenerationBackendError,
  no provider -> ConfigurationError.
"""

import json
import logging
from contextlib import nullcontext
from typing import Any, AsyncContextManager, Callable, Optional, Tuple, Type, TypeVar

import httpx
import openai
from instructor.exceptions import InstructorRetryException
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from app.core.settings import settings
from app.domain.exceptions import (
    GenerationBackendError,
    StudyGenerationError,
    ValidationError,
)
from app.infrastructure.ai.instructor_factory import create_async_instructor_client
from app.infrastructure.observability.generation_logging import compact_error

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

TRANSIENT_ERRORS = (
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteTimeout,
    httpx.ConnectError,
    httpx.WriteError,
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
    ConnectionResetError,
)

_TRANSIENT_MARKERS = (
    "429",
    "rate limit",
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "overloaded",
    "502",
    "503",
    "504",
)


def is_transient_error(err: BaseException) -> bool:
    if isinstance(err, StudyGenerationError):
        return False
    if isinstance(err, TRANSIENT_ERRORS) or isinstance(err.__cause__, TRANSIENT_ERRORS):
        return True
    text = f"{type(err).__name__} {err}".lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


class StrictEngine:
    """
    Structured generation engine with constrained decoding.

    The underlying client is created lazily so that a missing provider key
    surfaces as a ConfigurationError on first use instead of at import time.

    `attempt_slot`, when given, is entered around each transport attempt only,
    so backoff sleeps between attempts do not hold a concurrency slot.
    """

    paces_attempts = True

    DEFAULT_SYSTEM_PROMPT = (
        "You are an expert assistant that produces structured answers. "
        "Your answer MUST be one valid JSON object matching the provided schema exactly. "
        "Do NOT include any text before or after the JSON."
    )

    def __init__(
        self,
        temperature: float = 0.2,
        client: Optional[Any] = None,
        model: Optional[str] = None,
        transport_max_attempts: Optional[int] = None,
    ):
        self.temperature = temperature
        self.max_tokens = (
            int(settings.STRICT_ENGINE_MAX_TOKENS) if settings.STRICT_ENGINE_MAX_TOKENS else None
        )
        self.transport_max_attempts = max(
            1, int(transport_max_attempts or settings.GENERATION_TRANSPORT_MAX_ATTEMPTS)
        )
        self._client = client
        self._model = model

    def _ensure_client(self) -> Tuple[Any, str]:
        if self._client is None or self._model is None:
            self._client, self._model = create_async_instructor_client()
        return self._client, self._model

    def _build_messages(self, prompt: str, system_prompt: Optional[str] = None) -> list:
        return [
            {"role": "system", "content": system_prompt or self.DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

    async def generate(
        self,
        prompt: str,
        schema: Type[T],
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
        attempt_slot: Optional[Callable[[], AsyncContextManager[Any]]] = None,
    ) -> T:
        """
        Generate one response conforming to `schema`.

        Raises:
            ValidationError: output could not be parsed into the schema.
            GenerationBackendError: the provider call failed after transport retries.
            ConfigurationError: no provider is configured.
        """
        client, model = self._ensure_client()
        messages = self._build_messages(prompt, system_prompt)
        try:
            return await self._agenerate_with_retry(
                client,
                model,
                messages,
                schema,
                self.temperature if temperature is None else temperature,
                attempt_slot,
            )
        except StudyGenerationError:
            raise
        except (PydanticValidationError, json.JSONDecodeError) as exc:
            raise ValidationError(
                f"{schema.__name__} output failed validation: {compact_error(exc)}"
            ) from exc
        except InstructorRetryException as exc:
            if is_transient_error(exc):
                raise GenerationBackendError(f"Generation call failed: {compact_error(exc)}") from exc
            raise ValidationError(
                f"{schema.__name__} output failed validation: {compact_error(exc)}"
            ) from exc
        except Exception as exc:
            logger.error("StrictEngine (Async) failed: %s", compact_error(exc))
            raise GenerationBackendError(f"Generation call failed: {compact_error(exc)}") from exc

    async def _agenerate_with_retry(
        self,
        client: Any,
        model: str,
        messages: list,
        schema: Type[T],
        temperature: float,
        attempt_slot: Optional[Callable[[], AsyncContextManager[Any]]] = None,
    ) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.transport_max_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=settings.GENERATION_TRANSPORT_BASE_DELAY_SECONDS,
                max=settings.GENERATION_TRANSPORT_MAX_DELAY_SECONDS,
            ),
            retry=retry_if_exception(is_transient_error),
            reraise=True,
        )
        response = None
        async for attempt in retrying:
            with attempt:
                async with (attempt_slot() if attempt_slot else nullcontext()):
                    response = await client.chat.completions.create(
                        model=model,
                        messages=messages,
                        response_model=schema,
                        temperature=temperature,
                        max_tokens=self.max_tokens,
                        max_retries=1,  # a single validation attempt
                    )
        return response


_default_engine: Optional[StrictEngine] = None


def get_strict_engine() -> StrictEngine:
    """Get or create a singleton StrictEngine instance."""
    global _default_engine
    if _default_engine is None:
        _default_engine = StrictEngine()
    return _default_engine


__all__ = [
    "StrictEngine",
    "get_strict_engine",
    "is_transient_error",
]
