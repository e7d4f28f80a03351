from typing import Dict, Any, List, Optional

import structlog

from wayfinder.domain.models.analysis import QueryPerception
from wayfinder.domain.models.memory import ScoredMemory
from wayfinder.domain.models.plan import (
    Decision,
    DecisionAction,
    ExecutionResult,
    MemoryShortcut,
    NavigateCommand,
    Plan,
    SearchCommand,
    Step,
    StepStatus,
    StepType,
)
from wayfinder.domain.planning.context_analyzer import ContextAnalyzer
from wayfinder.domain.planning.planning_engine import PlanningEngine, generate_plan_id
from wayfinder.domain.planning.plan_validator import PlanValidator

logger = structlog.get_logger(__name__)

SHORTCUT_MIN_SCORE = 0.7


class DecisionModule:
    """Plans a query and decides what to do with the step under the cursor"""

    def __init__(self, planning_engine: Optional[PlanningEngine] = None, context_analyzer: Optional[ContextAnalyzer] = None):
        self.planning_engine = planning_engine or PlanningEngine()
        self.context_analyzer = context_analyzer or ContextAnalyzer()

    async def generate_plan(
        self,
        query: str,
        perception: Optional[QueryPerception] = None,
        memories: Optional[List[ScoredMemory]] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Plan:
        """Analyze and plan; any planning failure yields the fallback plan"""

        memories = memories or []
        try:
            analysis = await self.context_analyzer.analyze_request(query, perception, memories, context)
            plan = await self.planning_engine.create_plan(analysis)
            return self.optimize_plan(plan, memories)
        except Exception as e:
            logger.warning("Plan generation failed, using fallback plan", query=query, error=str(e), exc_info=True)
            return self.create_fallback_plan(query)

    def create_fallback_plan(self, query: str) -> Plan:
        plan = Plan(
            id=generate_plan_id(),
            query=query,
            type="search",
            steps=[
                Step(
                    id="1",
                    type=StepType.SEARCH,
                    description="Search web memory for relevant content",
                    command=SearchCommand(query=query),
                ),
                Step(
                    id="2",
                    type=StepType.NAVIGATION,
                    description="Navigate to best matching page",
                    command=NavigateCommand(url_from_step="1", highlight_text=query),
                    dependencies=["1"],
                ),
            ],
            estimated_time=3000,
        )
        return PlanValidator.ensure_valid(plan)

    def optimize_plan(self, plan: Plan, memories: List[ScoredMemory]) -> Plan:
        """Attach highly relevant stored pages as shortcuts"""

        shortcuts = [
            MemoryShortcut(
                id=memory.id,
                url=memory.metadata.get("url"),
                title=memory.metadata.get("title"),
                score=memory.score,
            )
            for memory in memories
            if memory.score > SHORTCUT_MIN_SCORE and memory.type == "web_page"
        ]
        if shortcuts:
            plan = plan.model_copy(update={"memory_shortcuts": shortcuts})
        return plan

    def decide_next_action(self, plan: Plan, current_step: Optional[str], step_results: List[ExecutionResult]) -> Decision:
        step = plan.get_step(current_step)
        if step is None:
            return Decision(action=DecisionAction.COMPLETE, message="Plan execution completed")

        for dependency in step.dependencies:
            recorded = [result for result in step_results if result.step_id == dependency]
            if not recorded:
                return Decision(
                    action=DecisionAction.WAIT,
                    message=f"Waiting for dependency '{dependency}'",
                    next_step=dependency,
                )
            if not any(result.success for result in recorded):
                return Decision(
                    action=DecisionAction.SKIP,
                    message=f"Dependency '{dependency}' failed",
                    next_step=plan.next_step_id(step.id),
                    result=ExecutionResult(
                        step_id=step.id,
                        success=False,
                        status=StepStatus.FAILED,
                        error=f"dependency '{dependency}' failed",
                    ),
                )

        return Decision(
            action=DecisionAction.EXECUTE,
            message=f"Executing {step.type.value} step '{step.id}'",
            next_step=plan.next_step_id(step.id),
        )
