import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Optional, Type

import structlog
from pydantic import BaseModel

from app.domain.exceptions import GenerationBackendError
from app.domain.interfaces.generation_backend import IGenerationBackend

logger = structlog.get_logger(__name__)


class GenerationLimiter:
    """
    Bounds simultaneous in-flight generation calls for one orchestration run.
    Tracks current and peak in-flight counts.
    """

    def __init__(self, max_in_flight: int):
        self.max_in_flight = max(1, int(max_in_flight))
        self._semaphore = asyncio.Semaphore(self.max_in_flight)
        self._in_flight = 0
        self._peak_in_flight = 0
        self._total_calls = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    @property
    def total_calls(self) -> int:
        return self._total_calls

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self._in_flight += 1
            self._total_calls += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1


class BoundedGenerationBackend:
    """
    Wraps a generation backend with a shared limiter slot and a per-call timeout.
    A timed-out call is abandoned and reported as GenerationBackendError.

    Backends that set `paces_attempts` receive the limiter slot as `attempt_slot`
    and hold it per transport attempt; any other backend holds one slot per call.
    """

    def __init__(
        self,
        backend: IGenerationBackend,
        limiter: GenerationLimiter,
        call_timeout_seconds: Optional[float] = None,
    ):
        self._backend = backend
        self._limiter = limiter
        self._call_timeout_seconds = (
            float(call_timeout_seconds) if call_timeout_seconds and call_timeout_seconds > 0 else None
        )

    @property
    def limiter(self) -> GenerationLimiter:
        return self._limiter

    async def generate(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> Any:
        if getattr(self._backend, "paces_attempts", False):
            return await self._timed(
                self._backend.generate(
                    prompt,
                    schema,
                    system_prompt=system_prompt,
                    temperature=temperature,
                    attempt_slot=self._limiter.slot,
                ),
                schema,
            )
        async with self._limiter.slot():
            return await self._timed(
                self._backend.generate(prompt, schema, system_prompt=system_prompt, temperature=temperature),
                schema,
            )

    async def _timed(self, call: Awaitable[Any], schema: Type[BaseModel]) -> Any:
        if self._call_timeout_seconds is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self._call_timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "generation_call_timeout",
                schema=schema.__name__,
                timeout_seconds=self._call_timeout_seconds,
            )
            raise GenerationBackendError(
                f"Generation call timed out after {self._call_timeout_seconds:g}s",
                code="GENERATION_TIMEOUT",
            ) from exc
