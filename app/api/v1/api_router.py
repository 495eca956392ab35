from fastapi import APIRouter

from app.api.v1.routers.studies import router as studies_router

v1_router = APIRouter(prefix="/api/v1")

v1_router.include_router(studies_router)
