import pytest

from wayfinder.domain.models.plan import (
    AnalyzeCommand,
    ExecutionResult,
    HighlightCommand,
    NavigateCommand,
    Plan,
    SearchCommand,
    Step,
    StepStatus,
    StepType,
    TerminationReason,
)
from wayfinder.domain.orchestration.execution_engine import ExecutionEngine
from wayfinder.domain.tool.action_executor import ActionOutcome
from wayfinder.domain.tool.step_handlers import SearchStepHandler, StepHandlerRegistry

FOUND = ActionOutcome(
    success=True,
    action="search",
    results=[{"id": "m1", "url": "https://example.com/fox", "score": 0.8}],
    count=1,
)
NOT_FOUND = ActionOutcome(success=False, action="search", error="embedding unavailable")


def _engine(actions, **kwargs) -> ExecutionEngine:
    kwargs.setdefault("step_delay", 0)
    kwargs.setdefault("wait_delay", 0)
    return ExecutionEngine(actions, **kwargs)


def _search(step_id, deps=()):
    return Step(id=step_id, type=StepType.SEARCH, command=SearchCommand(query="fox"), dependencies=list(deps))


def _highlight(step_id, deps=()):
    return Step(id=step_id, type=StepType.HIGHLIGHT, command=HighlightCommand(text="fox"), dependencies=list(deps))


@pytest.mark.asyncio
async def test_search_then_navigate_uses_the_first_result(scripted_actions):
    scripted_actions.search_outcomes = [FOUND]
    plan = Plan(id="p1", query="fox", type="search", steps=[
        _search("1"),
        Step(id="2", type=StepType.NAVIGATION, command=NavigateCommand(url_from_step="1"), dependencies=["1"]),
    ])

    execution = await _engine(scripted_actions).run_plan(plan)

    assert execution.success
    assert execution.terminated_by == TerminationReason.COMPLETED
    assert execution.iterations == 2
    assert scripted_actions.calls == [("search", "fox"), ("navigation", "https://example.com/fox")]
    assert execution.results == [
        {"id": "m1", "url": "https://example.com/fox", "score": 0.8},
        {"tab_id": 7, "created": False, "highlighted": False},
    ]


@pytest.mark.asyncio
async def test_failed_dependency_skips_the_dependent_step(scripted_actions):
    scripted_actions.search_outcomes = [FOUND]
    scripted_actions.highlight_outcomes = [
        ActionOutcome(success=False, action="highlight", tab_id=3, error="tab closed"),
    ]
    plan = Plan(id="p2", query="fox", type="chain", steps=[
        _search("A"),
        _highlight("B", ["A"]),
        _highlight("C", ["B"]),
    ])

    execution = await _engine(scripted_actions).run_plan(plan, context={"tab_id": 3})

    assert execution.iterations == 3
    assert [(r.step_id, r.success) for r in execution.step_results] == [("A", True), ("B", False), ("C", False)]
    skipped = execution.results_for("C")[0]
    assert skipped.status == StepStatus.FAILED
    assert skipped.error == "dependency 'B' failed"
    assert [call[0] for call in scripted_actions.calls] == ["search", "highlight"]
    assert execution.success


@pytest.mark.asyncio
async def test_unsatisfiable_wait_exhausts_the_budget(scripted_actions):
    # "a" waits on "z", which never runs because the cursor stays on "a"
    plan = Plan(id="p3", query="fox", type="stuck", steps=[_search("a", ["z"]), _search("z")])

    execution = await _engine(scripted_actions).run_plan(plan)

    assert execution.iterations == 5
    assert not execution.success
    assert execution.terminated_by == TerminationReason.BUDGET_EXHAUSTED
    assert execution.step_results == []
    assert scripted_actions.calls == []
    assert "budget" in execution.error


@pytest.mark.asyncio
async def test_failed_search_is_retried_in_place(scripted_actions):
    scripted_actions.search_outcomes = [NOT_FOUND, NOT_FOUND, FOUND]
    plan = Plan(id="p4", query="fox", type="search", steps=[
        _search("1"),
        Step(id="2", type=StepType.NAVIGATION, command=NavigateCommand(url_from_step="1"), dependencies=["1"]),
    ])

    execution = await _engine(scripted_actions).run_plan(plan)

    assert execution.success
    assert execution.iterations == 4
    assert [r.attempt for r in execution.results_for("1")] == [1, 2, 3]
    assert [r.success for r in execution.results_for("1")] == [False, False, True]
    assert execution.results_for("2")[0].success


@pytest.mark.asyncio
async def test_endless_retries_stop_at_the_budget(scripted_actions):
    scripted_actions.search_outcomes = [NOT_FOUND]

    execution = await _engine(scripted_actions, max_iterations=3).run_plan(
        Plan(id="p5", query="fox", type="search", steps=[_search("1")])
    )

    assert execution.iterations == 3
    assert execution.terminated_by == TerminationReason.BUDGET_EXHAUSTED
    assert len(scripted_actions.calls) == 3
    assert execution.results == []


@pytest.mark.asyncio
async def test_completion_on_the_last_budgeted_iteration_is_success(scripted_actions):
    scripted_actions.search_outcomes = [FOUND]
    plan = Plan(id="p6", query="fox", type="search", steps=[_search("1"), _search("2")])

    execution = await _engine(scripted_actions, max_iterations=2).run_plan(plan)

    assert execution.success
    assert execution.terminated_by == TerminationReason.COMPLETED


@pytest.mark.asyncio
async def test_navigation_without_a_usable_source_fails_and_retries(scripted_actions):
    scripted_actions.search_outcomes = [ActionOutcome(success=True, action="search", results=[{"id": "x"}])]
    plan = Plan(id="p7", query="fox", type="search", steps=[
        _search("1"),
        Step(id="2", type=StepType.NAVIGATION, command=NavigateCommand(url_from_step="1"), dependencies=["1"]),
    ])

    execution = await _engine(scripted_actions, max_iterations=3).run_plan(plan)

    navigation = execution.results_for("2")
    assert len(navigation) == 2
    assert "no result with a url" in navigation[0].error
    assert execution.terminated_by == TerminationReason.BUDGET_EXHAUSTED


@pytest.mark.asyncio
async def test_raising_handler_becomes_a_failed_result(scripted_actions):
    class ExplodingSearch(SearchStepHandler):
        async def handle(self, step, ctx):
            raise RuntimeError("kaboom")

    registry = StepHandlerRegistry()
    registry.register_handler(ExplodingSearch())
    plan = Plan(id="p8", query="fox", type="search", steps=[_search("1"), _highlight("2", ["1"])])

    execution = await _engine(scripted_actions, registry=registry, max_iterations=1).run_plan(plan)

    assert execution.step_results[0].error == "kaboom"
    assert execution.step_results[0].status == StepStatus.FAILED


@pytest.mark.asyncio
async def test_analysis_summarizes_earlier_results(scripted_actions):
    scripted_actions.search_outcomes = [ActionOutcome(success=True, action="search", results=[
        {"url": "https://a.example.com/1", "score": 0.4},
        {"url": "https://a.example.com/2", "score": 0.9},
        {"url": "https://b.example.com/", "score": 0.5},
    ])]
    plan = Plan(id="p9", query="fox", type="analysis", steps=[
        _search("s"),
        Step(id="an", type=StepType.ANALYSIS, command=AnalyzeCommand(query="fox", results_from_step="s"), dependencies=["s"]),
    ])

    execution = await _engine(scripted_actions).run_plan(plan)

    summary = execution.results_for("an")[0].data
    assert summary["result_count"] == 3
    assert summary["top_result"]["score"] == 0.9
    assert summary["domains"] == {"a.example.com": 2, "b.example.com": 1}


def test_aggregation_flattens_lists_and_drops_failures():
    results = [
        ExecutionResult(step_id="1", success=True, status=StepStatus.SUCCEEDED, data=[1, 2]),
        ExecutionResult(step_id="2", success=False, status=StepStatus.FAILED, data=[3]),
        ExecutionResult(step_id="3", success=True, status=StepStatus.SUCCEEDED, data={"tab_id": 4}),
        ExecutionResult(step_id="4", success=True, status=StepStatus.SUCCEEDED),
    ]

    assert ExecutionEngine.aggregate_results(results) == [1, 2, {"tab_id": 4}]


def test_registry_requires_a_handler_for_every_step_type():
    with pytest.raises(ValueError):
        StepHandlerRegistry([SearchStepHandler()])
