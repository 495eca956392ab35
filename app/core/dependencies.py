from typing import Annotated

from fastapi import Depends, Request

from app.infrastructure.container import StudyContainer


def get_container(request: Request) -> StudyContainer:
    """
    Dependency injection for the StudyContainer.
    Pulls the singleton instance from the app state (initialized in lifespan).
    """
    return request.app.state.container


def get_orchestrator(container: Annotated[StudyContainer, Depends(get_container)]):
    return container.orchestrator


def get_query_service(container: Annotated[StudyContainer, Depends(get_container)]):
    return container.query_service
