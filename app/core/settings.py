import logging
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    Study Generation Service - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Infrastructure
    SUPABASE_URL: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
    )
    SUPABASE_SERVICE_KEY: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
    )

    # Security
    STUDY_SERVICE_SECRET: str = "development-secret"

    # AI Models & Services
    GENERATION_PROVIDER: Literal["auto", "openai", "groq", "gemini"] = "auto"
    OPENAI_API_KEY: Optional[str] = None
    GROQ_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    OPENAI_GENERATION_MODEL: str = "gpt-4o-mini"
    GROQ_GENERATION_MODEL: str = "openai/gpt-oss-120b"
    GEMINI_GENERATION_MODEL: str = "gemini-2.5-flash-lite"
    STRICT_ENGINE_MAX_TOKENS: Optional[int] = 4096

    # Generation throughput controls
    GENERATION_MAX_CONCURRENCY: int = 10
    GENERATION_CALL_TIMEOUT_SECONDS: float = 60.0
    GENERATION_TRANSPORT_MAX_ATTEMPTS: int = 3
    GENERATION_TRANSPORT_BASE_DELAY_SECONDS: float = 1.0
    GENERATION_TRANSPORT_MAX_DELAY_SECONDS: float = 10.0
    STUDY_FANOUT_DEADLINE_SECONDS: Optional[float] = 110.0

    # Curriculum shape
    STUDY_PLAN_SIZE: int = 10
    STUDY_DEEP_DIVE_UNITS: int = 3
    STUDY_ENFORCE_COMPOSITION: bool = True

    # API Config
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    APP_ENV: str = "local"
    RUNNING_IN_DOCKER: bool = False

    @field_validator("APP_ENV", "ENVIRONMENT", mode="before")
    @classmethod
    def _normalize_environment_labels(cls, value: str | None) -> str:
        return str(value or "").strip().lower()

    @property
    def is_deployed_environment(self) -> bool:
        app_env = self.APP_ENV or self.ENVIRONMENT
        if app_env in {"staging", "production", "prod"}:
            return True
        if os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("RAILWAY_PROJECT_ID"):
            return True
        return bool(self.RUNNING_IN_DOCKER and app_env not in {"", "local", "development", "dev"})

    @property
    def single_day_units(self) -> int:
        return max(0, self.STUDY_PLAN_SIZE - self.STUDY_DEEP_DIVE_UNITS)

    @model_validator(mode="after")
    def _enforce_plan_shape(self) -> "Settings":
        if self.STUDY_PLAN_SIZE < 1:
            logger.warning(
                "STUDY_PLAN_SIZE must be positive; falling back to 10",
                extra={"requested": self.STUDY_PLAN_SIZE},
            )
            self.STUDY_PLAN_SIZE = 10
        if not 0 <= self.STUDY_DEEP_DIVE_UNITS <= self.STUDY_PLAN_SIZE:
            clamped = max(0, min(self.STUDY_DEEP_DIVE_UNITS, self.STUDY_PLAN_SIZE))
            logger.warning(
                "STUDY_DEEP_DIVE_UNITS out of range; clamping",
                extra={"requested": self.STUDY_DEEP_DIVE_UNITS, "clamped": clamped},
            )
            self.STUDY_DEEP_DIVE_UNITS = clamped
        self.GENERATION_MAX_CONCURRENCY = max(1, int(self.GENERATION_MAX_CONCURRENCY))
        self.GENERATION_TRANSPORT_MAX_ATTEMPTS = max(1, int(self.GENERATION_TRANSPORT_MAX_ATTEMPTS))
        return self


settings = Settings()  # type: ignore[call-arg]
