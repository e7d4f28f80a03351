"""
Template-based plan construction.

A plan type is chosen from the request analysis, the matching template is
copied, and each step receives a typed command built from the analysis. The
dependency edges of a template are never changed by parameterization.
"""

from typing import Dict, List, Optional

import structlog
from pydantic import BaseModel, Field

from wayfinder.domain.models.analysis import Complexity, RequestAnalysis, Urgency
from wayfinder.domain.models.memory import generate_id, utc_now
from wayfinder.domain.models.plan import (
    AnalyzeCommand,
    HighlightCommand,
    HighlightOptions,
    NavigateCommand,
    Plan,
    PlanPriority,
    SearchCommand,
    SearchOptions,
    Step,
    StepCommand,
    StepType,
)
from wayfinder.domain.planning.plan_validator import PlanValidator

logger = structlog.get_logger(__name__)

STEP_TIME_MS: Dict[StepType, int] = {
    StepType.SEARCH: 1000,
    StepType.NAVIGATION: 2000,
    StepType.HIGHLIGHT: 500,
    StepType.ANALYSIS: 3000,
}


def generate_plan_id() -> str:
    return "plan_" + generate_id()


class StepTemplate(BaseModel):
    id: str
    type: StepType
    description: str
    dependencies: List[str] = Field(default_factory=list)
    # Step whose results feed this one (navigation target, analysis input)
    source: Optional[str] = None


class PlanTemplate(BaseModel):
    type: str
    steps: List[StepTemplate]


DEFAULT_TEMPLATES: Dict[str, PlanTemplate] = {
    "search_navigate": PlanTemplate(
        type="search_navigate",
        steps=[
            StepTemplate(id="search", type=StepType.SEARCH, description="Search for relevant content"),
            StepTemplate(
                id="navigate",
                type=StepType.NAVIGATION,
                description="Navigate to best result",
                dependencies=["search"],
                source="search",
            ),
        ],
    ),
    "deep_analysis": PlanTemplate(
        type="deep_analysis",
        steps=[
            StepTemplate(id="search", type=StepType.SEARCH, description="Find relevant pages"),
            StepTemplate(
                id="analyze",
                type=StepType.ANALYSIS,
                description="Analyze search results",
                dependencies=["search"],
                source="search",
            ),
            StepTemplate(
                id="navigate_best",
                type=StepType.NAVIGATION,
                description="Navigate to best match",
                dependencies=["analyze"],
                source="search",
            ),
            StepTemplate(
                id="highlight",
                type=StepType.HIGHLIGHT,
                description="Highlight relevant text",
                dependencies=["navigate_best"],
            ),
        ],
    ),
}


class PlanningEngine:
    """Builds executable plans from request analyses"""

    def __init__(self, templates: Optional[Dict[str, PlanTemplate]] = None):
        source = DEFAULT_TEMPLATES if templates is None else templates
        self.templates: Dict[str, PlanTemplate] = {name: t.model_copy(deep=True) for name, t in source.items()}

    def determine_plan_type(self, analysis: RequestAnalysis) -> str:
        if analysis.intent == "information":
            return "search_navigate"
        if analysis.intent in ("learning", "research"):
            return "deep_analysis"
        if len(analysis.entities) > 2:
            return "deep_analysis"
        return "search_navigate"

    async def create_plan(self, analysis: RequestAnalysis) -> Plan:
        plan_type = self.determine_plan_type(analysis)
        template = self.templates.get(plan_type)

        if template is None:
            logger.info("No template for plan type, using basic plan", plan_type=plan_type)
            plan = self.create_basic_plan(analysis)
        else:
            steps = self.customize_template(template, analysis)
            plan = Plan(
                id=generate_plan_id(),
                query=analysis.query,
                type=plan_type,
                steps=steps,
                priority=PlanPriority.HIGH if analysis.urgency == Urgency.HIGH else PlanPriority.NORMAL,
                estimated_time=self.estimate_execution_time(steps),
                created_at=utc_now(),
                metadata={
                    "intent": analysis.intent,
                    "entities": [entity.model_dump() for entity in analysis.entities],
                    "context": analysis.context,
                },
            )

        PlanValidator.ensure_valid(plan)
        logger.info("Plan created", plan_id=plan.id, plan_type=plan.type, steps=len(plan.steps))
        return plan

    def customize_template(self, template: PlanTemplate, analysis: RequestAnalysis) -> List[Step]:
        copied = template.model_copy(deep=True)
        return [
            Step(
                id=step.id,
                type=step.type,
                description=step.description,
                command=self.build_command(step, analysis),
                dependencies=list(step.dependencies),
            )
            for step in copied.steps
        ]

    def build_command(self, step: StepTemplate, analysis: RequestAnalysis) -> StepCommand:
        if step.type == StepType.SEARCH:
            return SearchCommand(
                query=analysis.query,
                options=SearchOptions(
                    limit=20 if analysis.complexity == Complexity.HIGH else 10,
                    type=analysis.content_type,
                ),
            )
        if step.type == StepType.NAVIGATION:
            return NavigateCommand(url_from_step=step.source, highlight_text=analysis.query)
        if step.type == StepType.HIGHLIGHT:
            return HighlightCommand(
                text=analysis.query,
                options=HighlightOptions(style="search", case_sensitive=False),
            )
        if step.type == StepType.ANALYSIS:
            return AnalyzeCommand(query=analysis.query, results_from_step=step.source)
        raise ValueError(f"No command builder for step type {step.type}")

    def create_basic_plan(self, analysis: RequestAnalysis) -> Plan:
        steps = [
            Step(
                id="search",
                type=StepType.SEARCH,
                description="Search for content",
                command=SearchCommand(query=analysis.query),
            )
        ]
        return Plan(
            id=generate_plan_id(),
            query=analysis.query,
            type="basic",
            steps=steps,
            estimated_time=self.estimate_execution_time(steps),
        )

    def estimate_execution_time(self, steps: List[Step]) -> int:
        return sum(STEP_TIME_MS.get(step.type, 1000) for step in steps)
