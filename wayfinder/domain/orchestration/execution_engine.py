from typing import Dict, Any, List, Optional
import asyncio
import time

import structlog

from wayfinder.domain.errors import StepExecutionError
from wayfinder.domain.models.plan import (
    DecisionAction,
    ExecutionResult,
    Plan,
    PlanExecution,
    StepStatus,
    TerminationReason,
)
from wayfinder.domain.planning.decision_module import DecisionModule
from wayfinder.domain.tool.action_executor import ActionExecutor
from wayfinder.domain.tool.step_handlers import StepContext, StepHandlerRegistry
from wayfinder.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)


class ExecutionEngine:
    """Runs a plan step by step under a fixed iteration budget

    Every loop iteration either dispatches the step under the cursor, waits for
    an unrecorded dependency, or records a failure for a step whose dependency
    can no longer succeed. Failed search and navigation steps keep the cursor
    and are retried on the next iteration; retries repeat all side effects.
    """

    def __init__(
        self,
        actions: ActionExecutor,
        decision_module: Optional[DecisionModule] = None,
        registry: Optional[StepHandlerRegistry] = None,
        max_iterations: int = 5,
        step_delay: float = 0.3,
        wait_delay: float = 0.5
    ):
        self.actions = actions
        self.decision_module = decision_module or DecisionModule()
        self.registry = registry or StepHandlerRegistry()
        self.max_iterations = max_iterations
        self.step_delay = step_delay
        self.wait_delay = wait_delay

    async def run_plan(self, plan: Plan, context: Optional[Dict[str, Any]] = None) -> PlanExecution:
        step_results: List[ExecutionResult] = []
        ctx = StepContext(self.actions, step_results, context)

        cursor: Optional[str] = plan.steps[0].id if plan.steps else None
        iterations = 0
        terminated_by = TerminationReason.COMPLETED

        structlog.contextvars.bind_contextvars(plan_id=plan.id)
        try:
            while True:
                if cursor is None or plan.get_step(cursor) is None:
                    break
                if iterations >= self.max_iterations:
                    terminated_by = TerminationReason.BUDGET_EXHAUSTED
                    break
                iterations += 1

                decision = self.decision_module.decide_next_action(plan, cursor, step_results)

                if decision.action == DecisionAction.WAIT:
                    logger.info("Step waiting on dependency", step_id=cursor, dependency=decision.next_step)
                    await asyncio.sleep(self.wait_delay)
                    continue

                if decision.action == DecisionAction.SKIP:
                    step_results.append(decision.result)
                    logger.info("Step not dispatched", step_id=cursor, reason=decision.message)
                    cursor = decision.next_step
                else:
                    step = plan.get_step(cursor)
                    result = await self._execute_step(plan, step, ctx, step_results)
                    step_results.append(result)

                    if not result.success and step.retryable:
                        metrics.increment_counter("execution.step_retry", tags={"step_type": step.type.value})
                        logger.info("Retrying step", step_id=step.id, attempt=result.attempt)
                    else:
                        cursor = decision.next_step

                if cursor is not None and self.step_delay > 0:
                    await asyncio.sleep(self.step_delay)
        finally:
            structlog.contextvars.unbind_contextvars("plan_id")

        completed = terminated_by == TerminationReason.COMPLETED
        execution = PlanExecution(
            success=completed,
            plan=plan.summary(),
            step_results=step_results,
            results=self.aggregate_results(step_results),
            iterations=iterations,
            total_steps=len(plan.steps),
            terminated_by=terminated_by,
            error=None if completed else f"Iteration budget of {self.max_iterations} exhausted",
        )

        logger.info(
            "Plan execution finished",
            plan_id=plan.id,
            success=execution.success,
            iterations=iterations,
            steps_executed=execution.steps_executed,
            terminated_by=terminated_by.value
        )
        return execution

    async def _execute_step(self, plan: Plan, step, ctx: StepContext, step_results: List[ExecutionResult]) -> ExecutionResult:
        attempt = sum(1 for result in step_results if result.step_id == step.id) + 1
        logger.debug("Step running", step_id=step.id, step_type=step.type.value, status=StepStatus.RUNNING.value)

        start = time.perf_counter()
        try:
            result = await self.registry.dispatch(step, ctx)
        except StepExecutionError as e:
            result = ExecutionResult(step_id=step.id, success=False, status=StepStatus.FAILED, error=str(e))
        except Exception as e:
            logger.error("Step handler raised", step_id=step.id, error=str(e), exc_info=True)
            result = ExecutionResult(step_id=step.id, success=False, status=StepStatus.FAILED, error=str(e))

        result = result.model_copy(update={"attempt": attempt})
        duration_ms = (time.perf_counter() - start) * 1000

        agent_logger.log_step_execution(
            plan_id=plan.id,
            step_id=step.id,
            step_type=step.type.value,
            attempt=attempt,
            success=result.success,
            duration_ms=duration_ms,
            error=result.error
        )
        return result

    @staticmethod
    def aggregate_results(step_results: List[ExecutionResult]) -> List[Any]:
        """Data of successful results in execution order, list payloads flattened"""

        aggregated: List[Any] = []
        for result in step_results:
            if not result.success or result.data is None:
                continue
            if isinstance(result.data, list):
                aggregated.extend(result.data)
            else:
                aggregated.append(result.data)
        return aggregated
