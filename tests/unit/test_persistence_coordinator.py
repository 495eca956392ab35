import asyncio

import pytest

from app.domain.exceptions import DuplicateRecordError, PersistenceError
from app.domain.study.schemas import GeneratedSession, PlanOutline
from app.services.study.persistence import PersistenceCoordinator
from tests.fakes import InMemoryStudyRepository, plan_payload, session_payload


def _plan() -> PlanOutline:
    return PlanOutline.model_validate(plan_payload())


def test_study_row_carries_planned_total_units() -> None:
    repo = InMemoryStudyRepository()
    coordinator = PersistenceCoordinator(repo)

    study_id = asyncio.run(coordinator.create_study(_plan(), user_id="user-1", preference_id="pref-1"))

    row = repo.studies[study_id]
    assert row["total_units"] == 10
    assert row["completed_units"] == 0
    assert row["is_active"] is True
    assert row["description"] == "Ten units on hope and prayer."
    assert row["preference_id"] == "pref-1"


def test_study_creation_failure_is_fatal() -> None:
    coordinator = PersistenceCoordinator(InMemoryStudyRepository(fail_study=True))

    with pytest.raises(PersistenceError):
        asyncio.run(coordinator.create_study(_plan(), user_id="user-1", preference_id="pref-1"))


def test_duplicate_unit_index_is_rejected_by_store() -> None:
    repo = InMemoryStudyRepository()
    coordinator = PersistenceCoordinator(repo)
    plan = _plan()

    async def _run() -> None:
        study_id = await coordinator.create_study(plan, user_id="user-1", preference_id="pref-1")
        row = coordinator.unit_row(0, plan.units[0])
        await repo.insert_unit(study_id, row)
        with pytest.raises(DuplicateRecordError):
            await repo.insert_unit(study_id, row)
        # through the coordinator the duplicate is logged and skipped
        assert await coordinator.create_unit(study_id, 0, plan.units[0]) is None

    asyncio.run(_run())
    assert len(repo.units) == 1


def test_duplicate_session_index_is_rejected_by_store() -> None:
    repo = InMemoryStudyRepository()
    coordinator = PersistenceCoordinator(repo)
    plan = _plan()
    session = GeneratedSession.model_validate(session_payload(0))

    async def _run() -> None:
        study_id = await coordinator.create_study(plan, user_id="user-1", preference_id="pref-1")
        unit_id = await coordinator.create_unit(study_id, 0, plan.units[0])
        assert await coordinator.create_session(unit_id, session) is True
        assert await coordinator.create_session(unit_id, session) is False

    asyncio.run(_run())
    assert len(repo.sessions) == 1


def test_persist_unit_isolates_session_failures() -> None:
    repo = InMemoryStudyRepository(fail_sessions=((2, 1),))
    coordinator = PersistenceCoordinator(repo)
    plan = _plan()
    sessions = [GeneratedSession.model_validate(session_payload(i)) for i in range(2)]

    async def _run():
        study_id = await coordinator.create_study(plan, user_id="user-1", preference_id="pref-1")
        return await coordinator.persist_unit(study_id, 2, plan.units[2], sessions)

    written = asyncio.run(_run())

    assert written.persisted is True
    assert written.persisted_session_indexes == [0]
    assert written.failed_session_indexes == [1]
    unit = repo.units[written.unit_id]
    assert unit["unit_index"] == 2
    assert unit["scope"] == "deep-dive-2days"
    assert unit["is_completed"] is False


def test_unit_created_callback_fires_before_session_inserts() -> None:
    repo = InMemoryStudyRepository()
    coordinator = PersistenceCoordinator(repo)
    plan = _plan()
    sessions = [GeneratedSession.model_validate(session_payload(i)) for i in range(2)]
    seen: list[tuple[str, int]] = []

    async def _run():
        study_id = await coordinator.create_study(plan, user_id="user-1", preference_id="pref-1")
        return await coordinator.persist_unit(
            study_id,
            2,
            plan.units[2],
            sessions,
            on_unit_created=lambda unit_id: seen.append((unit_id, len(repo.sessions))),
        )

    written = asyncio.run(_run())

    assert seen == [(written.unit_id, 0)]
    assert len(repo.sessions) == 2


def test_unit_failure_skips_sessions() -> None:
    repo = InMemoryStudyRepository(fail_unit_indexes=(3,))
    coordinator = PersistenceCoordinator(repo)
    plan = _plan()
    sessions = [GeneratedSession.model_validate(session_payload(0))]

    async def _run():
        study_id = await coordinator.create_study(plan, user_id="user-1", preference_id="pref-1")
        return await coordinator.persist_unit(study_id, 3, plan.units[3], sessions)

    written = asyncio.run(_run())

    assert written.persisted is False
    assert repo.units == {}
    assert repo.sessions == {}


def test_session_row_has_generated_fields() -> None:
    session = GeneratedSession.model_validate(session_payload(1))

    row = PersistenceCoordinator.session_row(session)

    assert row["session_index"] == 1
    assert row["key_insights"] == ["God provides", "God guides"]
    assert row["memory_verse"] == "Psalm 23:1"
    assert row["is_completed"] is False


def test_deactivate_study_is_best_effort() -> None:
    class _Broken(InMemoryStudyRepository):
        async def set_study_active(self, study_id, is_active):
            raise PersistenceError("down")

    assert asyncio.run(PersistenceCoordinator(_Broken()).deactivate_study("s1")) is False
