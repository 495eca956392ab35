import logging
from typing import Any, Tuple

import instructor

from app.core.ai_models import AIModelConfig
from app.core.settings import settings
from app.domain.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _create_openai_client() -> Tuple[Any, str]:
    if not AIModelConfig.OPENAI_API_KEY:
        raise ConfigurationError("Missing OPENAI_API_KEY")
    from openai import AsyncOpenAI

    client = instructor.from_openai(AsyncOpenAI(api_key=AIModelConfig.OPENAI_API_KEY))
    return client, AIModelConfig.OPENAI_MODEL_NAME


def _create_groq_client() -> Tuple[Any, str]:
    if not AIModelConfig.GROQ_API_KEY:
        raise ConfigurationError("Missing GROQ_API_KEY")
    try:
        from groq import AsyncGroq
    except ImportError as exc:
        raise ConfigurationError("groq package not installed") from exc

    client = instructor.from_groq(
        AsyncGroq(api_key=AIModelConfig.GROQ_API_KEY),
        mode=instructor.Mode.JSON,
    )
    return client, AIModelConfig.GROQ_MODEL_NAME


def _create_gemini_client() -> Tuple[Any, str]:
    """Gemini through the google.genai SDK."""
    if not AIModelConfig.GEMINI_API_KEY:
        raise ConfigurationError("Missing GEMINI_API_KEY")
    try:
        from google import genai
    except ImportError as exc:
        raise ConfigurationError("google-genai package not installed") from exc

    factory_fn = getattr(instructor, "from_genai", None)
    if factory_fn is None:
        raise ConfigurationError("Instructor build does not support Gemini adapters (from_genai missing)")

    mode = getattr(instructor.Mode, "GENAI_STRUCTURED_OUTPUTS", instructor.Mode.JSON)
    wrapped = factory_fn(
        client=genai.Client(api_key=AIModelConfig.GEMINI_API_KEY),
        mode=mode,
        use_async=True,
    )
    return wrapped, AIModelConfig.GEMINI_MODEL_NAME


_BUILDERS = {
    "openai": _create_openai_client,
    "groq": _create_groq_client,
    "gemini": _create_gemini_client,
}


def create_async_instructor_client() -> Tuple[Any, str]:
    """Create and return an async instructor client and model name."""
    failures: list[str] = []
    for provider in AIModelConfig.provider_order(settings.GENERATION_PROVIDER):
        try:
            client, model = _BUILDERS[provider]()
            logger.debug("Instructor client using %s: %s", provider, model)
            return client, model
        except ConfigurationError as exc:
            failures.append(f"{provider}: {exc.message}")

    raise ConfigurationError(
        "No valid AI provider found for structured generation. "
        "Set OPENAI_API_KEY, GROQ_API_KEY, or GEMINI_API_KEY.",
        details=failures,
    )
