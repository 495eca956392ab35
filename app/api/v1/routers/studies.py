from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.v1.auth import require_service_auth
from app.api.v1.errors import ERROR_RESPONSES, status_for_error
from app.api.v1.schemas.studies import (
    ActiveStudyResponse,
    CompletenessResponse,
    EligibilityResponse,
    GenerateStudyRequest,
    GenerateStudyResponse,
)
from app.core.dependencies import get_orchestrator, get_query_service
from app.infrastructure.observability.correlation import get_correlation_id
from app.services.study.queries import StudyQueryService
from app.workflows.study_generation.orchestrator import StudyGenerationOrchestrator

router = APIRouter(
    prefix="/studies",
    tags=["studies"],
    dependencies=[Depends(require_service_auth)],
)


@router.post(
    "/generate",
    response_model=GenerateStudyResponse,
    responses={code: ERROR_RESPONSES[code] for code in (400, 401, 404, 500, 503)},
)
async def generate_study(
    request: GenerateStudyRequest,
    orchestrator: StudyGenerationOrchestrator = Depends(get_orchestrator),
):
    """
    Runs one generation: preferences -> tags -> plan -> study -> units/sessions.
    A run that persisted at least one unit answers with success; use the
    completeness endpoint to detect partial studies.
    """
    result = await orchestrator.run(request.preference_id, request.user_id)
    if result.success:
        return GenerateStudyResponse(**result.to_response())

    body = result.to_response()
    body["request_id"] = get_correlation_id()
    return JSONResponse(status_code=status_for_error(result.error), content=body)


@router.get(
    "/active",
    response_model=ActiveStudyResponse,
    responses={code: ERROR_RESPONSES[code] for code in (400, 401, 500)},
)
async def get_active_study(
    user_id: str = Query(default=""),
    service: StudyQueryService = Depends(get_query_service),
):
    study = await service.get_active_study(user_id.strip())
    return ActiveStudyResponse(study=study)


@router.get(
    "/eligibility",
    response_model=EligibilityResponse,
    responses={code: ERROR_RESPONSES[code] for code in (400, 401, 500)},
)
async def get_generation_eligibility(
    user_id: str = Query(default=""),
    service: StudyQueryService = Depends(get_query_service),
):
    can_generate = await service.can_generate_new_study(user_id.strip())
    return EligibilityResponse(user_id=user_id.strip(), can_generate=can_generate)


@router.get(
    "/{study_id}/completeness",
    response_model=CompletenessResponse,
    responses={code: ERROR_RESPONSES[code] for code in (401, 404, 500)},
)
async def get_study_completeness(
    study_id: str,
    service: StudyQueryService = Depends(get_query_service),
):
    completeness = await service.get_completeness(study_id)
    return CompletenessResponse(**completeness.model_dump())
