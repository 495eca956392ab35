"""
Study Container - infrastructure wiring.

Centralizes service instantiation and dependency injection for the API and CLI.
Collaborators can be injected (tests); otherwise they are created lazily.
"""
from typing import Optional

from app.core.structured_generation import get_strict_engine
from app.domain.interfaces.generation_backend import IGenerationBackend
from app.domain.repositories.preference_repository import IPreferenceRepository
from app.domain.repositories.study_repository import IStudyRepository
from app.infrastructure.supabase.client import reset_async_supabase_client
from app.infrastructure.supabase.repositories.supabase_preference_repository import (
    SupabasePreferenceRepository,
)
from app.infrastructure.supabase.repositories.supabase_study_repository import SupabaseStudyRepository
from app.services.study.queries import StudyQueryService
from app.workflows.study_generation.orchestrator import StudyGenerationOrchestrator


class StudyContainer:
    """
    IoC Container for the study generation service.
    """

    def __init__(
        self,
        generation_backend: Optional[IGenerationBackend] = None,
        preference_repository: Optional[IPreferenceRepository] = None,
        study_repository: Optional[IStudyRepository] = None,
    ):
        # Lazy initialization of services
        self._generation_backend = generation_backend
        self._preference_repository = preference_repository
        self._study_repository = study_repository
        self._orchestrator = None
        self._query_service = None

    @property
    def generation_backend(self) -> IGenerationBackend:
        if self._generation_backend is None:
            self._generation_backend = get_strict_engine()
        return self._generation_backend

    @property
    def preference_repository(self) -> IPreferenceRepository:
        if self._preference_repository is None:
            self._preference_repository = SupabasePreferenceRepository()
        return self._preference_repository

    @property
    def study_repository(self) -> IStudyRepository:
        if self._study_repository is None:
            self._study_repository = SupabaseStudyRepository()
        return self._study_repository

    @property
    def orchestrator(self) -> StudyGenerationOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = StudyGenerationOrchestrator(
                backend=self.generation_backend,
                preference_repository=self.preference_repository,
                study_repository=self.study_repository,
            )
        return self._orchestrator

    @property
    def query_service(self) -> StudyQueryService:
        if self._query_service is None:
            self._query_service = StudyQueryService(self.study_repository)
        return self._query_service

    async def startup(self) -> None:
        _ = self.orchestrator

    async def shutdown(self) -> None:
        if isinstance(self._study_repository, SupabaseStudyRepository) or isinstance(
            self._preference_repository, SupabasePreferenceRepository
        ):
            reset_async_supabase_client()
