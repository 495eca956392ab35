from __future__ import annotations

from typing import Any, Optional, Protocol, Type

from pydantic import BaseModel


class IGenerationBackend(Protocol):
    """
    Fallible, latency-variable text generation service.

    Returns structured output for `schema` as a model instance, a mapping, or raw
    JSON text. Callers must treat the result as untrusted and decode it through
    `app.domain.study.validation`. May raise `ValidationError`,
    `GenerationBackendError` or `ConfigurationError`.

    A backend that sets `paces_attempts = True` also accepts an `attempt_slot`
    keyword: a zero-argument async context manager factory entered around each
    transport attempt.
    """

    async def generate(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> Any: ...
