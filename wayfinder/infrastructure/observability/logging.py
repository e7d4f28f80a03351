import structlog
import logging
import sys
from typing import Dict, Any, Optional
import os

from wayfinder.domain.models.memory import utc_now


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "wayfinder"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add plan and session context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = utc_now().isoformat()

    context = structlog.contextvars.get_contextvars()
    for key in ("plan_id", "session_id"):
        if key in context and key not in event_dict:
            event_dict[key] = context[key]

    return event_dict


class AgentLogger:
    """Specialized logger for agent pipeline events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_agent_event(
        self,
        event_type: str,
        query: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log pipeline-level events (query received, completed, failed)"""

        self.logger.info(
            "agent_event",
            event_type=event_type,
            query=query,
            data=data or {},
            **kwargs
        )

    def log_step_execution(
        self,
        plan_id: str,
        step_id: str,
        step_type: str,
        attempt: int,
        success: bool = True,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None
    ):
        """Log one step attempt"""

        self.logger.info(
            "step_execution",
            plan_id=plan_id,
            step_id=step_id,
            step_type=step_type,
            attempt=attempt,
            success=success,
            duration_ms=duration_ms,
            error=error
        )

    def log_workflow_transition(
        self,
        query: str,
        from_node: str,
        to_node: str,
        condition: Optional[str] = None,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        """Log pipeline graph transitions"""

        self.logger.info(
            "workflow_transition",
            query=query,
            from_node=from_node,
            to_node=to_node,
            condition=condition,
            state_summary=state_summary or {}
        )

    def log_memory_update(
        self,
        memory_type: str,
        action: str,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log writes to the memory store"""

        self.logger.info(
            "memory_update",
            memory_type=memory_type,
            action=action,
            details=details or {}
        )


# Global logger instance
agent_logger = AgentLogger("wayfinder")


class LatencyStats:
    """Running count/sum/min/max for one timed operation"""

    def __init__(self):
        self.count = 0
        self.total_ms = 0.0
        self.min_ms: Optional[float] = None
        self.max_ms = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0.0,
            "min": self.min_ms or 0.0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process latencies, counters and gauges; every sample is also logged at debug"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        agent_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        self.counters[name] = self.counters.get(name, 0) + value
        agent_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        self.gauges[name] = value
        agent_logger.logger.debug(
            "metric",
            metric_type="gauge",
            name=name,
            value=value,
            tags=tags or {}
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Flat view: latency.<operation> summaries plus raw counters and gauges"""

        summary: Dict[str, Any] = {
            f"latency.{operation}": stats.summary()
            for operation, stats in self.latencies.items()
        }
        summary.update(self.counters)
        summary.update(self.gauges)
        return summary


metrics = MetricsCollector()
