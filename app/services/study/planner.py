import structlog

from app.core.ai_models import AIModelConfig
from app.core.settings import settings
from app.domain.exceptions import PlanningError
from app.domain.interfaces.generation_backend import IGenerationBackend
from app.domain.prompts.study import StudyPrompts
from app.domain.study.schemas import PlanOutline, PreferenceRecord, Tags
from app.domain.study.types import UnitScope
from app.domain.study.validation import DecodeFailure, decode_structured
from app.infrastructure.observability.generation_logging import emit_event

logger = structlog.get_logger(__name__)


class PlannerStage:
    """
    Produces the ordered unit outline. Runs once; any rejection is fatal and
    happens before a Study row exists.
    """

    def __init__(
        self,
        backend: IGenerationBackend,
        *,
        plan_size: int = settings.STUDY_PLAN_SIZE,
        deep_dive_units: int = settings.STUDY_DEEP_DIVE_UNITS,
        enforce_composition: bool = settings.STUDY_ENFORCE_COMPOSITION,
        temperature: float = AIModelConfig.DEFAULT_TEMPERATURE_PLANNER,
    ):
        self._backend = backend
        self.plan_size = max(1, int(plan_size))
        self.deep_dive_units = min(max(0, int(deep_dive_units)), self.plan_size)
        self.single_day_units = self.plan_size - self.deep_dive_units
        self.enforce_composition = enforce_composition
        self._temperature = temperature

    async def plan(self, preferences: PreferenceRecord, tags: Tags) -> PlanOutline:
        prompt = StudyPrompts.planner_user(
            preferences,
            tags,
            plan_size=self.plan_size,
            single_day_units=self.single_day_units,
            deep_dive_units=self.deep_dive_units,
        )
        raw = await self._backend.generate(
            prompt,
            PlanOutline,
            system_prompt=StudyPrompts.PLANNER_SYSTEM,
            temperature=self._temperature,
        )

        decoded = decode_structured(raw, PlanOutline)
        if isinstance(decoded, DecodeFailure):
            emit_event(logger, "planner_validation_failed", level="warning", reason=decoded.summary())
            raise PlanningError(
                f"Plan output failed validation ({decoded.summary()})",
                details={"reason": decoded.reason, "errors": decoded.errors},
            )

        plan = self.normalize(decoded.value)
        self.check(plan)
        return plan

    @staticmethod
    def normalize(plan: PlanOutline) -> PlanOutline:
        """Unit indices follow output order, 0-based."""
        units = [unit.model_copy(update={"index": position}) for position, unit in enumerate(plan.units)]
        return plan.model_copy(update={"units": units})

    def check(self, plan: PlanOutline) -> None:
        problems: list[str] = []
        if len(plan.units) != self.plan_size:
            problems.append(f"expected {self.plan_size} units, got {len(plan.units)}")

        if self.enforce_composition:
            single_day = plan.scope_counts()[UnitScope.SINGLE_DAY]
            deep_dive = plan.deep_dive_count
            if single_day != self.single_day_units or deep_dive != self.deep_dive_units:
                problems.append(
                    f"expected {self.single_day_units} single-day + {self.deep_dive_units} deep-dive units, "
                    f"got {single_day} + {deep_dive}"
                )

        missing_passages = [unit.index for unit in plan.units if not unit.primary_passages]
        if missing_passages:
            problems.append(f"units without primary passages: {missing_passages}")

        if problems:
            emit_event(logger, "planner_validation_failed", level="warning", reason="; ".join(problems))
            raise PlanningError("Plan rejected: " + "; ".join(problems), details={"problems": problems})
