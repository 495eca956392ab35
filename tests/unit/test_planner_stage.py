import asyncio

import pytest

from app.domain.exceptions import GenerationBackendError, PlanningError
from app.domain.study.schemas import PreferenceRecord, Tags
from app.domain.study.types import UnitScope
from app.services.study.planner import PlannerStage
from tests.fakes import FakeGenerationBackend, backend_error, plan_payload, preference_row, tags_payload


def _inputs() -> tuple[PreferenceRecord, Tags]:
    return PreferenceRecord.model_validate(preference_row()), Tags.model_validate(tags_payload())


def _planner(backend, **kwargs) -> PlannerStage:
    options = {"plan_size": 10, "deep_dive_units": 3, "enforce_composition": True}
    options.update(kwargs)
    return PlannerStage(backend, **options)


def test_plan_has_ten_units_with_seven_single_day_and_three_deep_dives() -> None:
    backend = FakeGenerationBackend()
    preferences, tags = _inputs()

    plan = asyncio.run(_planner(backend).plan(preferences, tags))

    assert len(plan.units) == 10
    assert plan.scope_counts()[UnitScope.SINGLE_DAY] == 7
    assert sum(1 for unit in plan.units if unit.scope.is_deep_dive) == 3
    prompt = backend.calls_for("PlanOutline")[0]
    assert "7 single-day units and 3 deep-dive units" in prompt
    assert "Translation: NIV" in prompt


def test_unit_indices_follow_output_order_zero_based() -> None:
    payload = plan_payload()
    for unit in payload["units"]:
        unit["index"] = 99
    backend = FakeGenerationBackend(plan=lambda prompt, n: payload)
    preferences, tags = _inputs()

    plan = asyncio.run(_planner(backend).plan(preferences, tags))

    assert [unit.index for unit in plan.units] == list(range(10))
    assert [unit.title for unit in plan.units] == [f"Unit {i}" for i in range(10)]


def test_wrong_unit_count_is_fatal() -> None:
    backend = FakeGenerationBackend(plan=lambda prompt, n: plan_payload(["single-day"] * 9))
    preferences, tags = _inputs()

    with pytest.raises(PlanningError, match="expected 10 units, got 9"):
        asyncio.run(_planner(backend).plan(preferences, tags))
    assert len(backend.calls_for("PlanOutline")) == 1


def test_wrong_composition_is_fatal_when_enforced() -> None:
    scopes = ["single-day"] * 10
    backend = FakeGenerationBackend(plan=lambda prompt, n: plan_payload(scopes))
    preferences, tags = _inputs()

    with pytest.raises(PlanningError, match="single-day"):
        asyncio.run(_planner(backend).plan(preferences, tags))

    plan = asyncio.run(_planner(backend, enforce_composition=False).plan(preferences, tags))
    assert len(plan.units) == 10


def test_schema_violation_is_fatal() -> None:
    payload = plan_payload()
    payload["units"][3]["primary_passages"] = []
    backend = FakeGenerationBackend(plan=lambda prompt, n: payload)
    preferences, tags = _inputs()

    with pytest.raises(PlanningError) as exc_info:
        asyncio.run(_planner(backend).plan(preferences, tags))
    assert exc_info.value.details["reason"] == "schema_violation"


def test_backend_failure_propagates() -> None:
    backend = FakeGenerationBackend(plan=lambda prompt, n: backend_error("planner timed out"))
    preferences, tags = _inputs()

    with pytest.raises(GenerationBackendError, match="planner timed out"):
        asyncio.run(_planner(backend).plan(preferences, tags))


def test_plan_size_is_configurable() -> None:
    scopes = ["single-day", "deep-dive-2days", "single-day", "single-day"]
    backend = FakeGenerationBackend(plan=lambda prompt, n: plan_payload(scopes))
    preferences, tags = _inputs()

    plan = asyncio.run(_planner(backend, plan_size=4, deep_dive_units=1).plan(preferences, tags))

    assert len(plan.units) == 4
    assert plan.deep_dive_count == 1
