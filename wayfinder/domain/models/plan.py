from typing import Annotated, Dict, Any, List, Optional, Literal, Union
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from enum import Enum

from wayfinder.domain.models.memory import utc_now


class StepType(str, Enum):
    """Closed set of step kinds; each has exactly one handler"""
    SEARCH = "search"
    NAVIGATION = "navigation"
    HIGHLIGHT = "highlight"
    ANALYSIS = "analysis"


class ToolName(str, Enum):
    """Tool label carried by a step, one per step kind"""
    SEARCH_WEB_MEMORY = "search_web_memory"
    NAVIGATE_TO_PAGE = "navigate_to_page"
    HIGHLIGHT_TEXT = "highlight_text"
    ANALYZE_RESULTS = "analyze_results"


TOOL_BY_STEP_TYPE: Dict[StepType, ToolName] = {
    StepType.SEARCH: ToolName.SEARCH_WEB_MEMORY,
    StepType.NAVIGATION: ToolName.NAVIGATE_TO_PAGE,
    StepType.HIGHLIGHT: ToolName.HIGHLIGHT_TEXT,
    StepType.ANALYSIS: ToolName.ANALYZE_RESULTS,
}

RETRYABLE_STEP_TYPES = frozenset({StepType.SEARCH, StepType.NAVIGATION})


class StepStatus(str, Enum):
    """Per-step execution state"""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PlanPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"


class SearchOptions(BaseModel):
    limit: int = 10
    type: Optional[str] = None
    min_score: Optional[float] = None


class HighlightOptions(BaseModel):
    style: str = "default"
    case_sensitive: bool = False
    whole_word: bool = False


class SearchCommand(BaseModel):
    """Search web memory for the query"""
    kind: Literal["search"] = "search"
    query: str
    options: SearchOptions = Field(default_factory=SearchOptions)


class NavigateCommand(BaseModel):
    """Open a page, either a fixed url or the first result of an earlier step"""
    kind: Literal["navigation"] = "navigation"
    url: Optional[str] = None
    url_from_step: Optional[str] = None
    highlight_text: Optional[str] = None

    @model_validator(mode="after")
    def _needs_target(self):
        if not self.url and not self.url_from_step:
            raise ValueError("navigation needs either url or url_from_step")
        return self


class HighlightCommand(BaseModel):
    """Highlight text in the current tab"""
    kind: Literal["highlight"] = "highlight"
    text: str
    options: HighlightOptions = Field(default_factory=HighlightOptions)


class AnalyzeCommand(BaseModel):
    """Summarize the results recorded by an earlier step"""
    kind: Literal["analysis"] = "analysis"
    query: str
    results_from_step: Optional[str] = None


StepCommand = Annotated[
    Union[SearchCommand, NavigateCommand, HighlightCommand, AnalyzeCommand],
    Field(discriminator="kind"),
]


class Step(BaseModel):
    """Single unit of plan execution"""
    id: str = Field(description="Step identifier, unique within its plan")
    type: StepType
    description: str = ""
    command: StepCommand
    dependencies: List[str] = Field(default_factory=list, description="Step ids that must succeed first")

    @model_validator(mode="after")
    def _command_matches_type(self):
        if self.command.kind != self.type.value:
            raise ValueError(f"step {self.id}: {self.command.kind} command on a {self.type.value} step")
        return self

    @property
    def tool(self) -> ToolName:
        return TOOL_BY_STEP_TYPE[self.type]

    @property
    def parameters(self) -> Dict[str, Any]:
        return self.command.model_dump(exclude={"kind"})

    @property
    def retryable(self) -> bool:
        return self.type in RETRYABLE_STEP_TYPES


class MemoryShortcut(BaseModel):
    """Highly relevant stored page attached to a plan"""
    id: str
    url: Optional[str] = None
    title: Optional[str] = None
    score: float


class Plan(BaseModel):
    """Ordered, dependency-annotated steps for one query; used once"""
    id: str
    query: str
    type: str
    steps: List[Step] = Field(default_factory=list)
    priority: PlanPriority = PlanPriority.NORMAL
    estimated_time: int = Field(0, description="Advisory duration in milliseconds")
    created_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    memory_shortcuts: List[MemoryShortcut] = Field(default_factory=list)

    def get_step(self, step_id: Optional[str]) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def next_step_id(self, step_id: str) -> Optional[str]:
        """Id of the step after step_id in plan order, None at the end"""
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                if index + 1 < len(self.steps):
                    return self.steps[index + 1].id
                return None
        return None

    def summary(self) -> "PlanSummary":
        return PlanSummary(id=self.id, type=self.type, query=self.query)


class PlanSummary(BaseModel):
    id: str
    type: str
    query: str


class ExecutionResult(BaseModel):
    """Outcome of one step attempt"""
    step_id: str
    success: bool
    status: StepStatus
    data: Optional[Any] = None
    error: Optional[str] = None
    attempt: int = 1
    recorded_at: datetime = Field(default_factory=utc_now)


class DecisionAction(str, Enum):
    EXECUTE = "execute"
    WAIT = "wait"
    SKIP = "skip"
    COMPLETE = "complete"


class Decision(BaseModel):
    """What the engine does with the step under the cursor"""
    action: DecisionAction
    message: str = ""
    next_step: Optional[str] = None
    result: Optional[ExecutionResult] = None


class TerminationReason(str, Enum):
    COMPLETED = "completed"
    BUDGET_EXHAUSTED = "budget_exhausted"


class PlanExecution(BaseModel):
    """Aggregate result of running one plan"""
    success: bool
    plan: PlanSummary
    step_results: List[ExecutionResult] = Field(default_factory=list)
    results: List[Any] = Field(default_factory=list)
    iterations: int = 0
    total_steps: int = 0
    terminated_by: TerminationReason = TerminationReason.COMPLETED
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def steps_executed(self) -> int:
        return len(self.step_results)

    def results_for(self, step_id: str) -> List[ExecutionResult]:
        return [result for result in self.step_results if result.step_id == step_id]


class QueryOutcome(BaseModel):
    """Pipeline result returned by Agent.process_query"""
    success: bool
    query: str
    plan: Optional[PlanSummary] = None
    steps_executed: int = 0
    total_steps: int = 0
    results: List[Any] = Field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    @classmethod
    def failure(cls, query: str, error: str) -> "QueryOutcome":
        return cls(success=False, query=query, error=error)
