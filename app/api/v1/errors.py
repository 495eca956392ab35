from __future__ import annotations

from typing import Any

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from app.domain.exceptions import (
    ConfigurationError,
    InvalidInputError,
    NotFoundError,
    StudyGenerationError,
)
from app.infrastructure.observability.correlation import get_correlation_id

logger = structlog.get_logger(__name__)


def _error_example(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "success": False,
        "error": message,
        "code": code,
        "details": details,
        "request_id": "f6a4c304-1ce0-4cf5-9d8f-5d4deca4f51f",
    }


ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: {
        "description": "Bad Request",
        "content": {
            "application/json": {
                "example": _error_example("INVALID_INPUT", "Missing preference_id or user_id")
            }
        },
    },
    401: {
        "description": "Unauthorized",
        "content": {
            "application/json": {
                "example": _error_example("UNAUTHORIZED", "Unauthorized")
            }
        },
    },
    404: {
        "description": "Not Found",
        "content": {
            "application/json": {
                "example": _error_example("NOT_FOUND", "Preferences not found")
            }
        },
    },
    422: {
        "description": "Unprocessable Entity",
        "content": {
            "application/json": {
                "example": _error_example(
                    "FRONTEND_CONTRACT_BREACH",
                    "Request validation failed",
                    [{"loc": ["query", "user_id"], "msg": "Field required"}],
                )
            }
        },
    },
    500: {
        "description": "Internal Server Error",
        "content": {
            "application/json": {
                "example": _error_example("CLASSIFICATION_FAILED", "Classifier output rejected after 2 attempts")
            }
        },
    },
    503: {
        "description": "Service Unavailable",
        "content": {
            "application/json": {
                "example": _error_example(
                    "CONFIGURATION_ERROR", "No valid AI provider found for structured generation."
                )
            }
        },
    },
}


def status_for_error(exc: StudyGenerationError | None) -> int:
    if isinstance(exc, InvalidInputError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConfigurationError):
        return 503
    return 500


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "success": False,
        "error": message,
        "code": code,
        "details": details,
        "request_id": get_correlation_id(),
    }


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(message)
        self.status_code = int(status_code)
        self.code = code
        self.message = message
        self.details = details


async def api_error_exception_handler(_: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )


async def study_error_exception_handler(request: Request, exc: StudyGenerationError) -> JSONResponse:
    status_code = status_for_error(exc)
    log_method = logger.error if status_code >= 500 else logger.info
    log_method("study_request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content=error_body(exc.code, exc.message, exc.details),
    )
