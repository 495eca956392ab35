from __future__ import annotations

from fastapi.testclient import TestClient

from app.core.settings import settings
from app.domain.exceptions import ConfigurationError
from app.infrastructure.container import StudyContainer
from app.main import app
from tests.fakes import (
    PREFERENCE_ID,
    USER_ID,
    FakeGenerationBackend,
    InMemoryPreferenceRepository,
    InMemoryStudyRepository,
    backend_error,
    parse_session_prompt,
    session_payload,
)


def _set_local() -> tuple[str, str, bool, str]:
    original = (settings.APP_ENV, settings.ENVIRONMENT, settings.RUNNING_IN_DOCKER, settings.STUDY_SERVICE_SECRET)
    settings.APP_ENV = "local"
    settings.ENVIRONMENT = "development"
    settings.RUNNING_IN_DOCKER = False
    settings.STUDY_SERVICE_SECRET = "development-secret"
    return original


def _restore(original: tuple[str, str, bool, str]) -> None:
    settings.APP_ENV, settings.ENVIRONMENT, settings.RUNNING_IN_DOCKER, settings.STUDY_SERVICE_SECRET = original


def _install(backend=None, studies=None) -> InMemoryStudyRepository:
    studies = studies if studies is not None else InMemoryStudyRepository()
    app.state.container = StudyContainer(
        generation_backend=backend or FakeGenerationBackend(),
        preference_repository=InMemoryPreferenceRepository(),
        study_repository=studies,
    )
    return studies


def test_generate_returns_study_id_and_title() -> None:
    original = _set_local()
    studies = _install()
    try:
        with TestClient(app) as client:
            response = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert payload["title"] == "Hope in Prayer"
        assert payload["study_id"] in studies.studies
    finally:
        _restore(original)


def test_partial_generation_still_reports_success() -> None:
    def _handler(prompt: str, n: int):
        title, index, _ = parse_session_prompt(prompt)
        return backend_error() if title == "Unit 4" else session_payload(index)

    original = _set_local()
    studies = _install(FakeGenerationBackend(session=_handler))
    try:
        with TestClient(app) as client:
            response = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )
            study_id = response.json()["study_id"]
            completeness = client.get(f"/api/v1/studies/{study_id}/completeness")

        assert response.status_code == 200
        assert len(studies.units_for(study_id)) == 9
        assert completeness.status_code == 200
        assert completeness.json()["missing_unit_indexes"] == [4]
        assert completeness.json()["is_partial"] is True
    finally:
        _restore(original)


def test_missing_identifier_is_400() -> None:
    original = _set_local()
    studies = _install()
    try:
        with TestClient(app) as client:
            response = client.post("/api/v1/studies/generate", json={"preference_id": PREFERENCE_ID})

        assert response.status_code == 400
        payload = response.json()
        assert payload["success"] is False
        assert payload["code"] == "INVALID_INPUT"
        assert studies.row_count == 0
    finally:
        _restore(original)


def test_unknown_preference_is_404() -> None:
    original = _set_local()
    _install()
    try:
        with TestClient(app) as client:
            response = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": "missing", "user_id": USER_ID},
            )

        assert response.status_code == 404
        assert response.json()["error"] == "Preferences not found"
    finally:
        _restore(original)


def test_missing_provider_is_503() -> None:
    original = _set_local()
    studies = _install(FakeGenerationBackend(tags=lambda prompt, n: ConfigurationError("Missing OPENAI_API_KEY")))
    try:
        with TestClient(app) as client:
            response = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )

        assert response.status_code == 503
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert studies.row_count == 0
    finally:
        _restore(original)


def test_classifier_failure_is_500_with_zero_rows() -> None:
    original = _set_local()
    studies = _install(FakeGenerationBackend(tags=lambda prompt, n: "not json"))
    try:
        with TestClient(app) as client:
            response = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )

        assert response.status_code == 500
        assert response.json()["code"] == "CLASSIFICATION_FAILED"
        assert studies.row_count == 0
    finally:
        _restore(original)


def test_active_study_and_eligibility() -> None:
    original = _set_local()
    _install()
    try:
        with TestClient(app) as client:
            eligible_before = client.get("/api/v1/studies/eligibility", params={"user_id": USER_ID})
            generated = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )
            active = client.get("/api/v1/studies/active", params={"user_id": USER_ID})
            eligible_after = client.get("/api/v1/studies/eligibility", params={"user_id": USER_ID})
            missing_user = client.get("/api/v1/studies/active")

        assert eligible_before.json()["can_generate"] is True
        assert active.status_code == 200
        study = active.json()["study"]
        assert study["id"] == generated.json()["study_id"]
        assert [unit["unit_index"] for unit in study["units"]] == list(range(10))
        assert eligible_after.json()["can_generate"] is False
        assert missing_user.status_code == 400
    finally:
        _restore(original)


def test_unknown_study_completeness_is_404() -> None:
    original = _set_local()
    _install()
    try:
        with TestClient(app) as client:
            response = client.get("/api/v1/studies/nope/completeness")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
    finally:
        _restore(original)


def test_deployed_environment_requires_service_secret() -> None:
    original = _set_local()
    _install()
    settings.APP_ENV = "production"
    settings.STUDY_SERVICE_SECRET = "s3cret"
    try:
        with TestClient(app) as client:
            denied = client.post(
                "/api/v1/studies/generate",
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )
            allowed = client.post(
                "/api/v1/studies/generate",
                headers={"X-Service-Secret": "s3cret"},
                json={"preference_id": PREFERENCE_ID, "user_id": USER_ID},
            )

        assert denied.status_code == 401
        assert denied.json()["code"] == "UNAUTHORIZED"
        assert allowed.status_code == 200
    finally:
        _restore(original)


def test_health() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
