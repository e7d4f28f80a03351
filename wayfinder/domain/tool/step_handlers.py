"""
Step handlers.

One handler per StepType. The registry refuses to build unless every step type
has a handler, so dispatch never meets an unknown kind at run time. Handlers
report action failures as unsuccessful ExecutionResults and raise
StepExecutionError when a step cannot even be attempted.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from collections import Counter
from urllib.parse import urlparse

from wayfinder.domain.errors import StepExecutionError
from wayfinder.domain.models.plan import (
    AnalyzeCommand,
    ExecutionResult,
    HighlightCommand,
    NavigateCommand,
    SearchCommand,
    Step,
    StepStatus,
    StepType,
)
from wayfinder.domain.tool.action_executor import ActionExecutor, ActionOutcome


class StepContext:
    """What a handler may read while running one step"""

    def __init__(self, actions: ActionExecutor, step_results: List[ExecutionResult], context: Optional[Dict[str, Any]] = None):
        self.actions = actions
        self.step_results = step_results
        self.context = context or {}

    def latest_success(self, step_id: str) -> Optional[ExecutionResult]:
        for result in reversed(self.step_results):
            if result.step_id == step_id and result.success:
                return result
        return None

    def latest_tab_id(self) -> Optional[int]:
        if self.context.get("tab_id") is not None:
            return self.context["tab_id"]
        for result in reversed(self.step_results):
            if result.success and isinstance(result.data, dict) and result.data.get("tab_id") is not None:
                return result.data["tab_id"]
        return None


def _result(step: Step, outcome: ActionOutcome, data: Any) -> ExecutionResult:
    return ExecutionResult(
        step_id=step.id,
        success=outcome.success,
        status=StepStatus.SUCCEEDED if outcome.success else StepStatus.FAILED,
        data=data if outcome.success else None,
        error=outcome.error,
    )


class StepHandler(ABC):
    step_type: StepType

    @abstractmethod
    async def handle(self, step: Step, ctx: StepContext) -> ExecutionResult:
        pass


class SearchStepHandler(StepHandler):
    step_type = StepType.SEARCH

    async def handle(self, step: Step, ctx: StepContext) -> ExecutionResult:
        command: SearchCommand = step.command
        outcome = await ctx.actions.execute_search(command.query, command.options)
        return _result(step, outcome, outcome.results)


class NavigationStepHandler(StepHandler):
    step_type = StepType.NAVIGATION

    def resolve_url(self, step: Step, command: NavigateCommand, ctx: StepContext) -> str:
        if command.url:
            return command.url

        source = ctx.latest_success(command.url_from_step)
        if source is None or not isinstance(source.data, list):
            raise StepExecutionError(step.id, f"no results recorded for step '{command.url_from_step}'")
        for item in source.data:
            if isinstance(item, dict) and item.get("url"):
                return item["url"]
        raise StepExecutionError(step.id, f"step '{command.url_from_step}' returned no result with a url")

    async def handle(self, step: Step, ctx: StepContext) -> ExecutionResult:
        command: NavigateCommand = step.command
        url = self.resolve_url(step, command, ctx)
        outcome = await ctx.actions.execute_navigation(url, command.highlight_text)
        return _result(step, outcome, {
            "tab_id": outcome.tab_id,
            "created": outcome.created,
            "highlighted": outcome.highlighted,
        })


class HighlightStepHandler(StepHandler):
    step_type = StepType.HIGHLIGHT

    async def handle(self, step: Step, ctx: StepContext) -> ExecutionResult:
        command: HighlightCommand = step.command
        tab_id = ctx.latest_tab_id()
        if tab_id is None:
            raise StepExecutionError(step.id, "no tab available to highlight in")
        outcome = await ctx.actions.execute_highlight(tab_id, command.text, command.options)
        return _result(step, outcome, {"tab_id": tab_id, "count": outcome.count})


class AnalysisStepHandler(StepHandler):
    """Summarizes earlier search results without leaving the process"""

    step_type = StepType.ANALYSIS

    async def handle(self, step: Step, ctx: StepContext) -> ExecutionResult:
        command: AnalyzeCommand = step.command

        items: List[Dict[str, Any]] = []
        if command.results_from_step:
            source = ctx.latest_success(command.results_from_step)
            if source is not None and isinstance(source.data, list):
                items = [item for item in source.data if isinstance(item, dict)]

        return ExecutionResult(
            step_id=step.id,
            success=True,
            status=StepStatus.SUCCEEDED,
            data=self.summarize(command.query, items),
        )

    @staticmethod
    def summarize(query: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        domains = Counter(
            urlparse(item["url"]).hostname
            for item in items
            if item.get("url") and urlparse(item["url"]).hostname
        )
        top = max(items, key=lambda item: item.get("score") or 0, default=None)

        insights = []
        if not items:
            insights.append(f"No stored pages matched '{query}'")
        else:
            insights.append(f"{len(items)} stored pages matched '{query}'")
            if top is not None and top.get("score") is not None:
                insights.append(f"Best match scored {top['score']:.2f}")
            if domains:
                domain, count = domains.most_common(1)[0]
                insights.append(f"Most results come from {domain} ({count})")

        return {
            "query": query,
            "result_count": len(items),
            "top_result": top,
            "domains": dict(domains),
            "insights": insights,
        }


class StepHandlerRegistry:
    """Closed StepType -> handler table"""

    def __init__(self, handlers: Optional[List[StepHandler]] = None):
        handlers = handlers if handlers is not None else [
            SearchStepHandler(),
            NavigationStepHandler(),
            HighlightStepHandler(),
            AnalysisStepHandler(),
        ]
        self.handlers: Dict[StepType, StepHandler] = {}
        for handler in handlers:
            self.register_handler(handler)

        missing = [step_type.value for step_type in StepType if step_type not in self.handlers]
        if missing:
            raise ValueError(f"No handler registered for step types: {', '.join(missing)}")

    def register_handler(self, handler: StepHandler) -> None:
        self.handlers[handler.step_type] = handler

    def get_handler(self, step_type: StepType) -> StepHandler:
        return self.handlers[step_type]

    async def dispatch(self, step: Step, ctx: StepContext) -> ExecutionResult:
        return await self.get_handler(step.type).handle(step, ctx)
