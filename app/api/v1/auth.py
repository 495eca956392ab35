from __future__ import annotations

import structlog
from fastapi import Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from app.api.v1.errors import ApiError
from app.core.settings import settings

logger = structlog.get_logger(__name__)

DEVELOPMENT_SECRET = "development-secret"

bearer_auth = HTTPBearer(
    auto_error=False,
    scheme_name="BearerAuth",
    description="Authorization Bearer token. Use STUDY_SERVICE_SECRET as token value.",
)
service_secret_auth = APIKeyHeader(
    name="X-Service-Secret",
    auto_error=False,
    scheme_name="ServiceSecretAuth",
    description="Service secret header for S2S calls.",
)


def service_secret_configured() -> bool:
    expected = str(settings.STUDY_SERVICE_SECRET or "").strip()
    return bool(expected and expected != DEVELOPMENT_SECRET)


def _runtime_looks_deployed() -> bool:
    return bool(
        settings.RUNNING_IN_DOCKER
        or settings.APP_ENV in {"staging", "production", "prod"}
        or settings.ENVIRONMENT in {"staging", "production", "prod"}
    )


async def require_service_auth(
    bearer_credentials: HTTPAuthorizationCredentials | None = Security(bearer_auth),
    x_service_secret: str | None = Security(service_secret_auth),
) -> None:
    """
    Enforces API auth only in deployed environments.
    Accepts either Bearer token or X-Service-Secret using STUDY_SERVICE_SECRET value.
    """
    if not settings.is_deployed_environment:
        logger.debug("service_auth_bypass", auth_mode="local_bypass")
        if service_secret_configured() and _runtime_looks_deployed():
            logger.critical(
                "service_auth_env_inconsistent",
                app_env=settings.APP_ENV,
                environment=settings.ENVIRONMENT,
                running_in_docker=settings.RUNNING_IN_DOCKER,
            )
            raise ApiError(
                status_code=500,
                code="AUTH_ENV_INCONSISTENT",
                message="Invalid auth environment configuration",
                details="Auth bypass active while runtime signals non-local deployment",
            )
        return

    if not service_secret_configured():
        raise ApiError(
            status_code=500,
            code="AUTH_MISCONFIGURED",
            message="Service secret must be configured in deployed environments",
        )

    bearer = None
    if bearer_credentials and str(bearer_credentials.scheme or "").lower() == "bearer":
        bearer = (bearer_credentials.credentials or "").strip() or None
    header_secret = x_service_secret.strip() if x_service_secret else None
    candidate = bearer or header_secret
    caller_auth_mode = "bearer" if bearer else ("x_service_secret" if header_secret else "missing")

    if candidate != str(settings.STUDY_SERVICE_SECRET).strip():
        logger.warning("service_auth_failed", caller_auth_mode=caller_auth_mode)
        raise ApiError(
            status_code=401,
            code="UNAUTHORIZED",
            message="Unauthorized",
            details="Missing or invalid service token",
        )

    logger.debug("service_auth_ok", caller_auth_mode=caller_auth_mode)
