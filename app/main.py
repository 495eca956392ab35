from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError, ResponseValidationError
from fastapi.responses import JSONResponse

from app.api.v1.api_router import v1_router
from app.api.v1.auth import service_secret_configured
from app.api.v1.errors import (
    ApiError,
    api_error_exception_handler,
    error_body,
    study_error_exception_handler,
)
from app.core.settings import settings
from app.domain.exceptions import StudyGenerationError
from app.infrastructure.container import StudyContainer
from app.infrastructure.observability.correlation import CorrelationMiddleware
from app.infrastructure.observability.logger_config import configure_structlog

# Configure Structlog (JSON Logging)
configure_structlog()
logger = structlog.get_logger(__name__)
logger.info(
    "auth_runtime_mode",
    auth_mode="deployed" if settings.is_deployed_environment else "local_bypass",
    service_secret_configured=service_secret_configured(),
    app_env=settings.APP_ENV,
    environment=settings.ENVIRONMENT,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = getattr(app.state, "container", None) or StudyContainer()
    app.state.container = container
    await container.startup()
    try:
        yield
    finally:
        await container.shutdown()


app = FastAPI(
    title="Study Generation API",
    description="Generates persisted study -> unit -> session curricula from stored preferences.",
    version="1.0.0",
    lifespan=lifespan,
)

# Correlation Middleware - Generates/Extracts Request ID
app.add_middleware(CorrelationMiddleware)


@app.exception_handler(ResponseValidationError)
async def response_validation_exception_handler(request: Request, exc: ResponseValidationError):
    """
    Handles errors when the backend fails to match the output contract (response_model).
    """
    logger.error(
        "backend_contract_breach",
        type="contract_violation",
        direction="outbound_backend",
        endpoint=str(request.url),
        validation_errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(
            "BACKEND_CONTRACT_BREACH",
            "Internal Server Error: Data Contract Breach",
            exc.errors(),
        ),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handles errors when the incoming data doesn't match the input contract.
    """
    logger.warning(
        "frontend_contract_breach",
        type="contract_violation",
        direction="inbound_backend",
        endpoint=str(request.url),
        validation_errors=exc.errors(),
    )
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_body("FRONTEND_CONTRACT_BREACH", "Request validation failed", exc.errors()),
    )


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return await api_error_exception_handler(request, exc)


@app.exception_handler(StudyGenerationError)
async def study_error_handler(request: Request, exc: StudyGenerationError):
    return await study_error_exception_handler(request, exc)


# Include Modular Routers
app.include_router(v1_router)


@app.get("/health")
def health_check():
    """
    Service health check.
    """
    return {"status": "ok", "service": "study-generation", "api_v1": "available"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.API_PORT)
