"""
Prompts for the three generation stages: classifier, planner and session writer.
"""
import json
from typing import TYPE_CHECKING

from app.domain.study.types import (
    PLAN_SUMMARY_MAX_WORDS,
    SESSION_CONTEXT_MAX_WORDS,
    SESSION_WORD_BUDGET,
    UnitScope,
)
from app.domain.study.vocabulary import CANONICAL_TAGS, MAX_RELATED_TAGS, SENSITIVITY_FLAGS

if TYPE_CHECKING:
    from app.domain.study.schemas import PreferenceRecord, Tags, UnitOutline


class StudyPrompts:

    CLASSIFIER_SYSTEM = (
        "You classify Bible study interests. Output strict JSON only. Do not reveal your reasoning."
    )

    PLANNER_SYSTEM = (
        "You are a Bible study curriculum planner. Output strict JSON only. Do not reveal your reasoning."
    )

    SESSION_SYSTEM = (
        "You write Bible study sessions using retrieved Scripture/context. "
        "Output strict JSON only. Do not reveal your reasoning."
    )

    CLASSIFIER_STRICT_SUFFIX = """
STRICT MODE: your previous answer was rejected ({reason}).
- Return exactly one JSON object with the three keys primary_tags, related_tags, sensitivity_flags.
- Every key is required; use [] when nothing applies.
- primary_tags and sensitivity_flags may ONLY contain values copied from the lists above.
- related_tags has at most {max_related} entries.
""".strip()

    @staticmethod
    def classifier_user(preferences: "PreferenceRecord") -> str:
        return f"""
Map these interests to known tags from this list: [{", ".join(CANONICAL_TAGS)}].
Add up to {MAX_RELATED_TAGS} related tags.
Detect sensitivity topics: [{", ".join(SENSITIVITY_FLAGS)}].
Output schema:
{{ "primary_tags": [...], "related_tags": [...], "sensitivity_flags": [...] }}

User interests:
Goals: {", ".join(preferences.goals)}
Topics: {", ".join(preferences.topics)}
""".strip()

    @classmethod
    def classifier_user_strict(cls, preferences: "PreferenceRecord", reason: str) -> str:
        suffix = cls.CLASSIFIER_STRICT_SUFFIX.format(reason=reason, max_related=MAX_RELATED_TAGS)
        return f"{cls.classifier_user(preferences)}\n\n{suffix}"

    @staticmethod
    def planner_user(
        preferences: "PreferenceRecord",
        tags: "Tags",
        *,
        plan_size: int,
        single_day_units: int,
        deep_dive_units: int,
    ) -> str:
        scopes = " | ".join(scope.value for scope in UnitScope)
        return f"""
Respect user canon and translation constraints.
Mix genres (OT narrative/poetry/prophets; Gospels; Epistles).
Create exactly {plan_size} units: {single_day_units} single-day units and {deep_dive_units} deep-dive units of 2-3 days.
Interleave unit types and genres; do not group all deep-dives together. Ramp difficulty gently.
Every unit needs at least one primary passage.
Output schema:
{{
 "title": "string",
 "units": [
   {{
     "index": 1,
     "type": "devotional|inductive|character|theme|word-study",
     "scope": "{scopes}",
     "title": "string",
     "primary_passages": ["Book ch:vs[-vs]"],
     "secondary_passages": ["Book ch:vs"],
     "estimated_minutes": number,
     "learning_goal": "string"
   }}
 ],
 "summary": "<={PLAN_SUMMARY_MAX_WORDS} words"
}}

User Profile:
Goals: {", ".join(preferences.goals)}
Topics: {", ".join(preferences.topics)}
Minutes per session: {preferences.minutes_per_session}
Reading level: {preferences.reading_level}
Translation: {preferences.translation}

Tags: {json.dumps(tags.model_dump(), ensure_ascii=False)}
""".strip()

    @staticmethod
    def session_user(
        unit: "UnitOutline",
        preferences: "PreferenceRecord",
        *,
        session_index: int,
        session_count: int,
    ) -> str:
        word_budget = SESSION_WORD_BUDGET[unit.scope]
        questions = (
            "Include 3-6 discussion questions in reflection_questions."
            if preferences.include_discussion_questions
            else "Skip discussion questions: return reflection_questions as []."
        )
        return f"""
Use the passages provided.
Reading level: {preferences.reading_level}
Translation: {preferences.translation}
Keep total words <= {word_budget}.
{questions}
Output schema:
{{
 "session_index": {session_index},
 "title": "string",
 "estimated_minutes": number,
 "passages": ["Book ch:vs[-vs]"],
 "context": "<={SESSION_CONTEXT_MAX_WORDS} words",
 "key_insights": ["...", "..."],
 "reflection_questions": ["...?", "...?", "...?"],
 "prayer_prompt": "2-4 sentences",
 "action_step": "1 imperative sentence",
 "memory_verse": "Book ch:vs",
 "cross_references": ["Book ch:vs"]
}}
key_insights has 2 or 3 items.

Unit: {unit.title}
Goal: {unit.learning_goal}
Primary passages: {", ".join(unit.primary_passages)}
Target minutes: {unit.estimated_minutes}
Session {session_index + 1} of {session_count}
""".strip()
