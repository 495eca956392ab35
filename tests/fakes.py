from __future__ import annotations

import asyncio
import copy
import inspect
import itertools
import re
import uuid
from typing import Any, Callable, Optional

from app.domain.exceptions import DuplicateRecordError, GenerationBackendError, PersistenceError
from app.domain.repositories.preference_repository import IPreferenceRepository
from app.domain.repositories.study_repository import IStudyRepository

USER_ID = "user-1"
PREFERENCE_ID = "pref-1"

_SESSION_RE = re.compile(r"Session (\d+) of (\d+)")
_UNIT_RE = re.compile(r"^Unit: (.+)$", re.MULTILINE)


def preference_row(**overrides: Any) -> dict[str, Any]:
    row = {
        "id": PREFERENCE_ID,
        "user_id": USER_ID,
        "goals": ["Build a daily habit"],
        "topics": ["Hope", "Prayer"],
        "minutes_per_session": 15,
        "translation": "NIV",
        "reading_level": "conversational",
        "include_discussion_questions": True,
    }
    row.update(overrides)
    return row


def tags_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "primary_tags": ["hope", "prayer"],
        "related_tags": ["peace", "trust"],
        "sensitivity_flags": [],
    }
    payload.update(overrides)
    return payload


def unit_payload(position: int, scope: str = "single-day", unit_type: str = "devotional") -> dict[str, Any]:
    return {
        "index": position + 1,
        "type": unit_type,
        "scope": scope,
        "title": f"Unit {position}",
        "primary_passages": ["Psalm 23:1-6"],
        "secondary_passages": ["Romans 5:1-5"],
        "estimated_minutes": 15,
        "learning_goal": f"Learn lesson {position}",
    }


def plan_payload(scopes: Optional[list[str]] = None, title: str = "Hope in Prayer") -> dict[str, Any]:
    """Default: 7 single-day units interleaved with 3 deep-dives (2 x 2-day, 1 x 3-day)."""
    if scopes is None:
        scopes = [
            "single-day",
            "single-day",
            "deep-dive-2days",
            "single-day",
            "single-day",
            "deep-dive-3days",
            "single-day",
            "single-day",
            "deep-dive-2days",
            "single-day",
        ]
    unit_types = ["devotional", "inductive", "character", "theme", "word-study"]
    return {
        "title": title,
        "summary": "Ten units on hope and prayer.",
        "units": [
            unit_payload(position, scope, unit_types[position % len(unit_types)])
            for position, scope in enumerate(scopes)
        ],
    }


def session_payload(session_index: int = 0, questions: int = 3, **overrides: Any) -> dict[str, Any]:
    payload = {
        "session_index": session_index,
        "title": f"Session {session_index}",
        "estimated_minutes": 15,
        "passages": ["Psalm 23:1-6"],
        "context": "David writes as a shepherd-king.",
        "key_insights": ["God provides", "God guides"],
        "reflection_questions": [f"Question {n}?" for n in range(questions)],
        "prayer_prompt": "Thank God for his care.",
        "action_step": "Read Psalm 23 aloud.",
        "memory_verse": "Psalm 23:1",
        "cross_references": ["John 10:11"],
    }
    payload.update(overrides)
    return payload


def parse_session_prompt(prompt: str) -> tuple[str, int, int]:
    """Returns (unit title, 0-based session index, session count)."""
    unit = _UNIT_RE.search(prompt)
    session = _SESSION_RE.search(prompt)
    return (
        unit.group(1).strip() if unit else "",
        int(session.group(1)) - 1 if session else 0,
        int(session.group(2)) if session else 1,
    )


Handler = Callable[[str, int], Any]


class FakeGenerationBackend:
    """
    Routes each call by schema name to a handler `(prompt, call_number) -> payload`.
    A handler may return an exception instance (raised), a coroutine, or a payload.
    Tracks in-flight calls so tests can assert the concurrency bound.
    """

    def __init__(
        self,
        *,
        tags: Optional[Handler] = None,
        plan: Optional[Handler] = None,
        session: Optional[Handler] = None,
        delay: float = 0.0,
    ) -> None:
        self.handlers: dict[str, Handler] = {
            "Tags": tags or (lambda prompt, n: tags_payload()),
            "PlanOutline": plan or (lambda prompt, n: plan_payload()),
            "GeneratedSession": session or (lambda prompt, n: session_payload(parse_session_prompt(prompt)[1])),
        }
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self._counters: dict[str, itertools.count] = {}
        self.in_flight = 0
        self.peak_in_flight = 0

    def calls_for(self, schema_name: str) -> list[str]:
        return [prompt for name, prompt in self.calls if name == schema_name]

    async def generate(self, prompt, schema, *, system_prompt=None, temperature=None):
        name = schema.__name__
        self.calls.append((name, prompt))
        call_number = next(self._counters.setdefault(name, itertools.count(1)))
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.handlers[name](prompt, call_number)
            if inspect.isawaitable(result):
                result = await result
        finally:
            self.in_flight -= 1
        if isinstance(result, Exception):
            raise result
        return copy.deepcopy(result)


def backend_error(message: str = "upstream unavailable") -> GenerationBackendError:
    return GenerationBackendError(message)


class InMemoryPreferenceRepository(IPreferenceRepository):
    def __init__(self, rows: Optional[list[dict[str, Any]]] = None) -> None:
        self.rows = list(rows if rows is not None else [preference_row()])
        self.lookups: list[tuple[str, str]] = []

    async def fetch_preference(self, preference_id: str, user_id: str) -> Optional[dict[str, Any]]:
        self.lookups.append((preference_id, user_id))
        for row in self.rows:
            if str(row.get("id")) == preference_id and str(row.get("user_id")) == user_id:
                return dict(row)
        return None


class InMemoryStudyRepository(IStudyRepository):
    """Enforces (study_id, unit_index) and (unit_id, session_index) uniqueness like the real tables."""

    def __init__(
        self,
        *,
        fail_study: bool = False,
        fail_unit_indexes: tuple[int, ...] = (),
        fail_sessions: tuple[tuple[int, int], ...] = (),
    ) -> None:
        self.fail_study = fail_study
        self.fail_unit_indexes = set(fail_unit_indexes)
        self.fail_sessions = set(fail_sessions)
        self.studies: dict[str, dict[str, Any]] = {}
        self.units: dict[str, dict[str, Any]] = {}
        self.sessions: dict[str, dict[str, Any]] = {}
        self._sequence = itertools.count(1)

    def _stamp(self, row: dict[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        stored["id"] = str(uuid.uuid4())
        stored["created_at"] = f"2026-01-01T00:00:00.{next(self._sequence):06d}"
        return stored

    @property
    def row_count(self) -> int:
        return len(self.studies) + len(self.units) + len(self.sessions)

    def units_for(self, study_id: str) -> list[dict[str, Any]]:
        return sorted(
            (row for row in self.units.values() if row["study_id"] == study_id),
            key=lambda row: row["unit_index"],
        )

    def sessions_for(self, unit_id: str) -> list[dict[str, Any]]:
        return sorted(
            (row for row in self.sessions.values() if row["unit_id"] == unit_id),
            key=lambda row: row["session_index"],
        )

    async def insert_study(self, row: dict[str, Any]) -> dict[str, Any]:
        if self.fail_study:
            raise PersistenceError("Study insert failed: connection refused")
        stored = self._stamp(row)
        self.studies[stored["id"]] = stored
        return dict(stored)

    async def insert_unit(self, study_id: str, row: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        if study_id not in self.studies:
            raise PersistenceError("Unit insert failed: study does not exist")
        if row["unit_index"] in self.fail_unit_indexes:
            raise PersistenceError(f"Unit insert failed for index {row['unit_index']}")
        if any(existing["unit_index"] == row["unit_index"] for existing in self.units_for(study_id)):
            raise DuplicateRecordError("Unit insert rejected by uniqueness constraint")
        stored = self._stamp({**row, "study_id": study_id})
        self.units[stored["id"]] = stored
        return dict(stored)

    async def insert_session(self, unit_id: str, row: dict[str, Any]) -> dict[str, Any]:
        await asyncio.sleep(0)
        unit = self.units.get(unit_id)
        if unit is None:
            raise PersistenceError("Session insert failed: unit does not exist")
        if (unit["unit_index"], row["session_index"]) in self.fail_sessions:
            raise PersistenceError("Session insert failed")
        if any(existing["session_index"] == row["session_index"] for existing in self.sessions_for(unit_id)):
            raise DuplicateRecordError("Session insert rejected by uniqueness constraint")
        stored = self._stamp({**row, "unit_id": unit_id})
        self.sessions[stored["id"]] = stored
        return dict(stored)

    async def set_study_active(self, study_id: str, is_active: bool) -> None:
        if study_id in self.studies:
            self.studies[study_id]["is_active"] = is_active

    async def get_study_tree(self, study_id: str) -> Optional[dict[str, Any]]:
        study = self.studies.get(study_id)
        if study is None:
            return None
        tree = dict(study)
        tree["units"] = [
            {**unit, "sessions": [dict(session) for session in self.sessions_for(unit["id"])]}
            for unit in self.units_for(study_id)
        ]
        return tree

    async def list_active_studies(self, user_id: str, *, with_units: bool = False) -> list[dict[str, Any]]:
        rows = [
            row
            for row in self.studies.values()
            if row.get("user_id") == user_id and row.get("is_active")
        ]
        rows.sort(key=lambda row: row["created_at"], reverse=True)
        if not with_units:
            return [dict(row) for row in rows]
        return [await self.get_study_tree(row["id"]) for row in rows]
