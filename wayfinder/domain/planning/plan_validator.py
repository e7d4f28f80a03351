from typing import List, Set

from pydantic import BaseModel, Field

from wayfinder.domain.errors import PlanningError
from wayfinder.domain.models.plan import Plan


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class PlanValidator:
    """Structural checks every emitted plan must pass"""

    @staticmethod
    def validate(plan: Plan) -> ValidationResult:
        errors: List[str] = []

        if not plan.steps:
            errors.append("plan has no steps")

        seen: Set[str] = set()
        for step in plan.steps:
            if step.id in seen:
                errors.append(f"duplicate step id '{step.id}'")

            for dependency in step.dependencies:
                if dependency == step.id:
                    errors.append(f"step '{step.id}' depends on itself")
                elif plan.get_step(dependency) is None:
                    errors.append(f"step '{step.id}' depends on unknown step '{dependency}'")
                elif dependency not in seen:
                    # Steps must be emitted in topological order
                    errors.append(f"step '{step.id}' depends on later step '{dependency}'")

            source = getattr(step.command, "url_from_step", None) or getattr(step.command, "results_from_step", None)
            if source is not None and source not in seen:
                errors.append(f"step '{step.id}' reads results of '{source}' which does not run before it")

            seen.add(step.id)

        return ValidationResult(is_valid=not errors, errors=errors)

    @classmethod
    def ensure_valid(cls, plan: Plan) -> Plan:
        result = cls.validate(plan)
        if not result.is_valid:
            raise PlanningError(f"Invalid plan {plan.id}: " + "; ".join(result.errors))
        return plan
