import asyncio
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from postgrest.exceptions import APIError

from app.domain.exceptions import DuplicateRecordError, PersistenceError
from app.infrastructure.supabase.repositories.supabase_preference_repository import (
    SupabasePreferenceRepository,
)
from app.infrastructure.supabase.repositories.supabase_study_repository import (
    STUDY_TREE_SELECT,
    SupabaseStudyRepository,
)


class _FakeQuery:
    def __init__(self, client: "_FakeClient", table: str) -> None:
        self.client = client
        self.table = table
        self.ops: list[tuple] = []

    def __getattr__(self, name: str):
        def _record(*args: Any, **kwargs: Any) -> "_FakeQuery":
            self.ops.append((name, args, kwargs))
            return self

        return _record

    async def execute(self):
        self.client.executed.append(self)
        if self.client.error is not None:
            raise self.client.error
        return SimpleNamespace(data=self.client.data)


class _FakeClient:
    def __init__(self, data: Optional[list] = None, error: Optional[Exception] = None) -> None:
        self.data = data if data is not None else []
        self.error = error
        self.executed: list[_FakeQuery] = []

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)


def _api_error(code: str, message: str = "boom") -> APIError:
    return APIError({"message": message, "code": code, "hint": None, "details": None})


def test_insert_unit_attaches_study_id_and_returns_row() -> None:
    client = _FakeClient(data=[{"id": "u1", "unit_index": 0}])
    repo = SupabaseStudyRepository(client)

    row = asyncio.run(repo.insert_unit("s1", {"unit_index": 0}))

    assert row["id"] == "u1"
    query = client.executed[0]
    assert query.table == "custom_study_units"
    assert query.ops[0][0] == "insert"
    assert query.ops[0][1][0] == {"unit_index": 0, "study_id": "s1"}


def test_unique_violation_maps_to_duplicate_record_error() -> None:
    repo = SupabaseStudyRepository(_FakeClient(error=_api_error("23505", "duplicate key value")))

    with pytest.raises(DuplicateRecordError) as exc_info:
        asyncio.run(repo.insert_session("u1", {"session_index": 0}))
    assert exc_info.value.details["code"] == "23505"


def test_other_store_errors_map_to_persistence_error() -> None:
    repo = SupabaseStudyRepository(_FakeClient(error=_api_error("23503", "foreign key violation")))

    with pytest.raises(PersistenceError) as exc_info:
        asyncio.run(repo.insert_study({"title": "x"}))
    assert not isinstance(exc_info.value, DuplicateRecordError)


def test_empty_insert_response_is_a_persistence_error() -> None:
    repo = SupabaseStudyRepository(_FakeClient(data=[]))

    with pytest.raises(PersistenceError, match="returned no row"):
        asyncio.run(repo.insert_study({"title": "x"}))


def test_active_studies_query_is_owner_scoped_and_newest_first() -> None:
    client = _FakeClient(data=[{"id": "s2"}, {"id": "s1"}])
    repo = SupabaseStudyRepository(client)

    rows = asyncio.run(repo.list_active_studies("user-1", with_units=True))

    assert [row["id"] for row in rows] == ["s2", "s1"]
    ops = client.executed[0].ops
    assert ("select", (STUDY_TREE_SELECT,), {}) in ops
    assert ("eq", ("user_id", "user-1"), {}) in ops
    assert ("eq", ("is_active", True), {}) in ops
    assert ("order", ("created_at",), {"desc": True}) in ops


def test_preference_lookup_filters_by_id_and_owner() -> None:
    client = _FakeClient(data=[{"id": "p1", "user_id": "user-1"}])
    repo = SupabasePreferenceRepository(client)

    row = asyncio.run(repo.fetch_preference("p1", "user-1"))

    assert row == {"id": "p1", "user_id": "user-1"}
    ops = client.executed[0].ops
    assert client.executed[0].table == "custom_study_preferences"
    assert ("eq", ("id", "p1"), {}) in ops
    assert ("eq", ("user_id", "user-1"), {}) in ops


def test_preference_lookup_returns_none_when_empty() -> None:
    assert asyncio.run(SupabasePreferenceRepository(_FakeClient()).fetch_preference("p1", "u1")) is None
