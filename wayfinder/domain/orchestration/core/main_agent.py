from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal
from datetime import datetime
import operator
import time

from langgraph.graph import StateGraph, END
from pydantic import BaseModel, Field
import structlog

from wayfinder.domain.context.context_retriever import MemoryRetriever
from wayfinder.domain.context.execution_history import ExecutionHistory
from wayfinder.domain.context.memory.memory_store import MemoryStore
from wayfinder.domain.errors import WayfinderError
from wayfinder.domain.models.analysis import QueryPerception
from wayfinder.domain.models.memory import MemoryRecord, MemorySearchResponse, MemoryStats, ScoredMemory, utc_now
from wayfinder.domain.models.plan import HighlightOptions, Plan, PlanExecution, QueryOutcome
from wayfinder.domain.orchestration.execution_engine import ExecutionEngine
from wayfinder.domain.perception.query_analyzer import QueryAnalyzer
from wayfinder.domain.planning.decision_module import DecisionModule
from wayfinder.domain.tool.action_executor import ActionExecutor, ActionOutcome
from wayfinder.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)


class PipelineState(TypedDict):
    """State for the query pipeline graph"""
    query: str
    request_context: Dict[str, Any]
    perception: Optional[QueryPerception]
    memories: List[ScoredMemory]
    plan: Optional[Plan]
    execution: Optional[PlanExecution]
    outcome: Optional[QueryOutcome]
    trace: Annotated[List[str], operator.add]
    error: Optional[str]


class AgentStats(BaseModel):
    total_queries: int
    successful_queries: int
    current_plan: Optional[str] = None
    memory_stats: Optional[MemoryStats] = None
    last_activity: Optional[datetime] = None


class AgentExport(BaseModel):
    execution_history: List[QueryOutcome] = Field(default_factory=list)
    stats: AgentStats
    export_date: datetime = Field(default_factory=utc_now)
    version: str = "1.0.0"


class Agent:
    """Perceive, retrieve, plan, execute and record, as one LangGraph pipeline"""

    def __init__(
        self,
        memory_store: MemoryStore,
        actions: ActionExecutor,
        query_analyzer: Optional[QueryAnalyzer] = None,
        retriever: Optional[MemoryRetriever] = None,
        decision_module: Optional[DecisionModule] = None,
        execution_engine: Optional[ExecutionEngine] = None,
        history_size: int = 100
    ):
        self.memory_store = memory_store
        self.actions = actions
        self.query_analyzer = query_analyzer or QueryAnalyzer()
        self.retriever = retriever or MemoryRetriever(memory_store)
        self.decision_module = decision_module or DecisionModule()
        self.execution_engine = execution_engine or ExecutionEngine(actions, decision_module=self.decision_module)
        self.history = ExecutionHistory(history_size)
        self.current_plan: Optional[Plan] = None
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the query pipeline graph"""

        workflow = StateGraph(PipelineState)

        workflow.add_node("perceive", self.perceive_node)
        workflow.add_node("retrieve", self.retrieve_node)
        workflow.add_node("plan", self.plan_node)
        workflow.add_node("execute", self.execute_node)
        workflow.add_node("record", self.record_node)
        workflow.add_node("error_handler", self.error_handler_node)

        workflow.set_entry_point("perceive")

        workflow.add_conditional_edges(
            "perceive",
            self.route_on_error("perceive", "retrieve"),
            {"next": "retrieve", "error": "error_handler"}
        )
        workflow.add_edge("retrieve", "plan")
        workflow.add_conditional_edges(
            "plan",
            self.route_on_error("plan", "execute"),
            {"next": "execute", "error": "error_handler"}
        )
        workflow.add_conditional_edges(
            "execute",
            self.route_on_error("execute", "record"),
            {"next": "record", "error": "error_handler"}
        )
        workflow.add_conditional_edges(
            "record",
            self.route_on_error("record", END),
            {"next": END, "error": "error_handler"}
        )
        workflow.add_edge("error_handler", END)

        return workflow.compile()

    def route_on_error(self, from_node: str, to_node: str):
        def route(state: PipelineState) -> Literal["next", "error"]:
            target = "error_handler" if state.get("error") else to_node
            agent_logger.log_workflow_transition(
                state["query"],
                from_node,
                str(target),
                condition="error" if state.get("error") else "ok"
            )
            return "error" if state.get("error") else "next"
        return route

    async def perceive_node(self, state: PipelineState) -> Dict[str, Any]:
        """Classify the query; analysis failures degrade to an unknown intent"""

        query = state["query"]
        if not query or not query.strip():
            return {"trace": ["perceive"], "error": "Query must not be empty"}

        context = state["request_context"]
        page_context = {"url": context["current_url"]} if context.get("current_url") else None
        try:
            perception = await self.query_analyzer.analyze_query(query, page_context)
        except Exception as e:
            logger.warning("Perception failed, continuing with unknown intent", error=str(e))
            perception = QueryPerception(query=query, intent="unknown")

        return {"trace": ["perceive"], "perception": perception}

    async def retrieve_node(self, state: PipelineState) -> Dict[str, Any]:
        memories = await self.retriever.retrieve_relevant_memories(state["query"])
        return {"trace": ["retrieve"], "memories": memories}

    async def plan_node(self, state: PipelineState) -> Dict[str, Any]:
        plan = await self.decision_module.generate_plan(
            state["query"],
            state["perception"],
            state["memories"],
            state["request_context"],
        )
        self.current_plan = plan
        logger.info("Plan generated", plan_id=plan.id, plan_type=plan.type, steps=len(plan.steps))
        return {"trace": ["plan"], "plan": plan}

    async def execute_node(self, state: PipelineState) -> Dict[str, Any]:
        try:
            execution = await self.execution_engine.run_plan(state["plan"], state["request_context"])
        except Exception as e:
            logger.error("Plan execution raised", error=str(e), exc_info=True)
            return {"trace": ["execute"], "error": f"Plan execution failed: {e}"}
        return {"trace": ["execute"], "execution": execution}

    async def record_node(self, state: PipelineState) -> Dict[str, Any]:
        """Store the interaction; on success also store each result that has a url"""

        query = state["query"]
        execution: PlanExecution = state["execution"]
        perception = state["perception"]
        intent = perception.intent if perception else "unknown"

        try:
            await self.memory_store.add_memory(MemoryRecord(
                type="query",
                content=query,
                metadata={
                    "intent": intent,
                    "success": execution.success,
                    "result_count": len(execution.results),
                },
                tags={"user_query", intent},
            ))

            if execution.success:
                for item in execution.results:
                    if not isinstance(item, dict) or not item.get("url"):
                        continue
                    await self.memory_store.add_memory(MemoryRecord(
                        type="search_result",
                        content=f"{item.get('title') or 'Untitled'} - {item.get('snippet') or ''}",
                        metadata={
                            "url": item["url"],
                            "title": item.get("title"),
                            "snippet": item.get("snippet"),
                            "score": item.get("score"),
                            "query": query,
                        },
                        tags={"search_result", "user_query"},
                    ))
        except WayfinderError as e:
            logger.error("Recording interaction failed", error=str(e))
            return {"trace": ["record"], "error": f"Failed to record interaction: {e}"}

        outcome = QueryOutcome(
            success=execution.success,
            query=query,
            plan=execution.plan,
            steps_executed=execution.steps_executed,
            total_steps=execution.total_steps,
            results=execution.results,
            error=execution.error,
        )
        return {"trace": ["record"], "outcome": outcome}

    async def error_handler_node(self, state: PipelineState) -> Dict[str, Any]:
        logger.error("Query pipeline failed", error=state.get("error"), trace=state.get("trace"))
        return {
            "trace": ["error_handler"],
            "outcome": QueryOutcome.failure(state["query"], state.get("error") or "Unknown error"),
        }

    async def process_query(self, query: str, context: Optional[Dict[str, Any]] = None) -> QueryOutcome:
        """Run the full pipeline; failures come back as an unsuccessful outcome"""

        agent_logger.log_agent_event("query_received", query)
        start = time.perf_counter()

        initial_state: PipelineState = {
            "query": query,
            "request_context": context or {},
            "perception": None,
            "memories": [],
            "plan": None,
            "execution": None,
            "outcome": None,
            "trace": [],
            "error": None,
        }

        try:
            final_state = await self.workflow.ainvoke(initial_state)
            outcome = final_state.get("outcome") or QueryOutcome.failure(query, "Pipeline produced no outcome")
        except Exception as e:
            logger.error("Query pipeline raised", error=str(e), exc_info=True)
            outcome = QueryOutcome.failure(query, str(e))

        self.history.add(outcome)
        metrics.record_latency("pipeline", (time.perf_counter() - start) * 1000)
        agent_logger.log_agent_event(
            "query_completed" if outcome.success else "query_failed",
            query,
            {"steps_executed": outcome.steps_executed, "results": len(outcome.results), "error": outcome.error}
        )
        return outcome

    async def run_plan(self, plan: Plan, context: Optional[Dict[str, Any]] = None) -> PlanExecution:
        self.current_plan = plan
        return await self.execution_engine.run_plan(plan, context)

    async def search_web_memory(
        self,
        query: str,
        limit: int = 10,
        type: Optional[str] = None,
        min_score: Optional[float] = None
    ) -> MemorySearchResponse:
        """Direct search without planning; the search itself is remembered"""

        try:
            hits = await self.memory_store.search(query, limit=limit, type=type, min_score=min_score)
            await self.memory_store.add_memory(MemoryRecord(
                type="search_query",
                content=query,
                metadata={
                    "result_count": len(hits),
                    "options": {"limit": limit, "type": type, "min_score": min_score},
                },
                tags={"search", "user_query"},
            ))
        except WayfinderError as e:
            logger.warning("Direct search failed", query=query, error=str(e))
            return MemorySearchResponse(success=False, query=query, error=str(e))

        results = [hit.to_public() for hit in hits]
        return MemorySearchResponse(success=True, query=query, results=results, count=len(results))

    async def navigate_to_page(self, url: str, highlight_text: Optional[str] = None) -> ActionOutcome:
        outcome = await self.actions.execute_navigation(url, highlight_text)
        if not outcome.success:
            return outcome

        try:
            await self.memory_store.add_memory(MemoryRecord(
                type="navigation",
                content=f"Navigated to {url}",
                metadata={"url": url, "highlighted": bool(highlight_text)},
                tags={"navigation", "user_action"},
            ))
        except WayfinderError as e:
            return outcome.model_copy(update={"success": False, "error": str(e)})
        return outcome

    async def highlight_text(self, tab_id: int, text: str, options: Optional[HighlightOptions] = None) -> ActionOutcome:
        outcome = await self.actions.execute_highlight(tab_id, text, options)
        if not outcome.success:
            return outcome

        try:
            await self.memory_store.add_memory(MemoryRecord(
                type="highlight",
                content=f"Highlighted: {text}",
                metadata={"tab_id": tab_id, "text": text, "highlighted_count": outcome.count},
                tags={"highlight", "user_action"},
            ))
        except WayfinderError as e:
            return outcome.model_copy(update={"success": False, "error": str(e)})
        return outcome

    async def get_stats(self) -> AgentStats:
        memory_stats = await self.memory_store.get_stats() if self.memory_store.is_initialized else None
        last = self.history.last
        return AgentStats(
            total_queries=self.history.total,
            successful_queries=self.history.successful,
            current_plan=self.current_plan.type if self.current_plan else None,
            memory_stats=memory_stats,
            last_activity=last.timestamp if last else None,
        )

    def get_history(self, limit: int = 10) -> List[QueryOutcome]:
        return self.history.get_history(limit)

    def clear_history(self) -> None:
        self.history.clear()
        self.current_plan = None

    async def export_data(self) -> str:
        """History and stats as an indented JSON document"""

        export = AgentExport(
            execution_history=list(self.history.get_history(self.history.max_entries)),
            stats=await self.get_stats(),
        )
        return export.model_dump_json(indent=2)
