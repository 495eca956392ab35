"""
Centralized AI model configuration for the study generation service.
"""

from app.core.settings import settings


class AIModelConfig:
    # Provider credentials
    OPENAI_API_KEY = settings.OPENAI_API_KEY
    GROQ_API_KEY = settings.GROQ_API_KEY
    GEMINI_API_KEY = settings.GEMINI_API_KEY

    # Model names
    OPENAI_MODEL_NAME = settings.OPENAI_GENERATION_MODEL
    GROQ_MODEL_NAME = settings.GROQ_GENERATION_MODEL
    GEMINI_MODEL_NAME = settings.GEMINI_GENERATION_MODEL

    # Default temperatures per stage
    DEFAULT_TEMPERATURE_CLASSIFIER = 0.0
    DEFAULT_TEMPERATURE_PLANNER = 0.4
    DEFAULT_TEMPERATURE_SESSION = 0.6

    _AUTO_PROVIDER_ORDER = ("openai", "groq", "gemini")

    @classmethod
    def provider_order(cls, preference: str = "auto") -> tuple[str, ...]:
        normalized = (preference or "auto").strip().lower()
        if normalized not in cls._AUTO_PROVIDER_ORDER:
            return cls._AUTO_PROVIDER_ORDER
        return (normalized,) + tuple(p for p in cls._AUTO_PROVIDER_ORDER if p != normalized)

    @classmethod
    def has_any_provider(cls) -> bool:
        return bool(cls.OPENAI_API_KEY or cls.GROQ_API_KEY or cls.GEMINI_API_KEY)
