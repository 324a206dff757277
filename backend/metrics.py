"""Per-turn LLM cost aggregation.

This module provides the CostAggregator class, a trace handler that
accumulates token usage, cost and timing for each pipeline run (keyed by
trace id). A summary opens on ``pipeline_start``, is fed by successful
``llm_call`` events and closes on ``pipeline_end``. The most recent
``MAX_TRACES`` summaries are kept for querying.

Usage:
    >>> from metrics import get_cost_aggregator
    >>> aggregator = get_cost_aggregator()
    >>> register_trace_handler(aggregator.handle)
    >>> ...  # run a pipeline
    >>> summary = aggregator.get("TURN-1a2b3c4d")
    >>> print(summary.total_cost)
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field

import structlog

from config import settings
from tracing import TraceEvent, TraceEventType

logger = structlog.get_logger(__name__)

MAX_TRACES = 500


@dataclass
class AgentCostStats:
    """Accumulated LLM usage for one agent within one trace.

    Attributes:
        calls: Number of successful LLM calls.
        cost: Estimated USD cost.
        input_tokens: Total prompt tokens.
        output_tokens: Total completion tokens.
        avg_duration_ms: Running mean call duration.
    """

    calls: int = 0
    cost: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0
    avg_duration_ms: float = 0.0


@dataclass
class TraceCostSummary:
    """Accumulated cost for a single pipeline run.

    Attributes:
        trace_id: The trace this summary belongs to.
        total_cost: Sum of estimated costs.
        total_input_tokens: Sum of prompt tokens.
        total_output_tokens: Sum of completion tokens.
        total_calls: Number of successful LLM calls.
        total_duration_ms: Sum of LLM call durations.
        by_agent: Per-agent breakdown.
        start_time: Unix timestamp of pipeline_start.
        end_time: Unix timestamp of pipeline_end (None while running).
    """

    trace_id: str
    start_time: float
    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_calls: int = 0
    total_duration_ms: int = 0
    by_agent: dict[str, AgentCostStats] = field(default_factory=dict)
    end_time: float | None = None


class CostAggregator:
    """Trace handler that keeps a bounded map of trace id to cost summary.

    Attributes:
        max_traces: Summaries retained; the oldest is evicted first.
        log_summaries: If True, completed summaries are logged.
    """

    def __init__(self, max_traces: int = MAX_TRACES, log_summaries: bool | None = None) -> None:
        self.max_traces = max_traces
        self.log_summaries = (
            log_summaries if log_summaries is not None else settings.cost_logging_enabled
        )
        self._summaries: OrderedDict[str, TraceCostSummary] = OrderedDict()
        self._lock = threading.Lock()

    def handle(self, event: TraceEvent) -> None:
        """Consume one trace event."""
        if event.type == TraceEventType.PIPELINE_START:
            self._open(event)
        elif event.type == TraceEventType.PIPELINE_END:
            self._close(event)
        elif event.type == TraceEventType.LLM_CALL and event.data.get("success"):
            self._record_call(event)

    def _open(self, event: TraceEvent) -> None:
        with self._lock:
            while len(self._summaries) >= self.max_traces:
                self._summaries.popitem(last=False)
            self._summaries[event.trace_id] = TraceCostSummary(
                trace_id=event.trace_id, start_time=event.timestamp
            )

    def _close(self, event: TraceEvent) -> None:
        with self._lock:
            summary = self._summaries.get(event.trace_id)
            if summary is None:
                return
            summary.end_time = event.timestamp

        if self.log_summaries:
            logger.info(
                "pipeline_cost_summary",
                trace_id=summary.trace_id,
                total_cost=round(summary.total_cost, 6),
                total_calls=summary.total_calls,
                total_input_tokens=summary.total_input_tokens,
                total_output_tokens=summary.total_output_tokens,
                duration_ms=round((summary.end_time - summary.start_time) * 1000),
                by_agent={
                    agent_id: round(stats.cost, 6)
                    for agent_id, stats in summary.by_agent.items()
                },
            )

    def _record_call(self, event: TraceEvent) -> None:
        data = event.data
        with self._lock:
            summary = self._summaries.get(event.trace_id)
            if summary is None:
                return

            cost = float(data.get("estimated_cost", 0.0))
            input_tokens = int(data.get("input_tokens", 0))
            output_tokens = int(data.get("output_tokens", 0))
            duration_ms = int(data.get("duration_ms", 0))

            summary.total_cost += cost
            summary.total_input_tokens += input_tokens
            summary.total_output_tokens += output_tokens
            summary.total_calls += 1
            summary.total_duration_ms += duration_ms

            stats = summary.by_agent.setdefault(data.get("agent_id", "unknown"), AgentCostStats())
            stats.calls += 1
            stats.cost += cost
            stats.input_tokens += input_tokens
            stats.output_tokens += output_tokens
            stats.avg_duration_ms += (duration_ms - stats.avg_duration_ms) / stats.calls

    def get(self, trace_id: str) -> TraceCostSummary | None:
        """Get the summary for a trace, running or complete."""
        with self._lock:
            return self._summaries.get(trace_id)

    def all(self) -> list[TraceCostSummary]:
        with self._lock:
            return list(self._summaries.values())

    def clear(self, trace_id: str) -> None:
        with self._lock:
            self._summaries.pop(trace_id, None)


_cost_aggregator: CostAggregator | None = None
_aggregator_lock = threading.Lock()


def get_cost_aggregator() -> CostAggregator:
    """Get the global CostAggregator instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        The global CostAggregator instance
    """
    global _cost_aggregator
    if _cost_aggregator is None:
        with _aggregator_lock:
            if _cost_aggregator is None:
                _cost_aggregator = CostAggregator()
    return _cost_aggregator


def reset_cost_aggregator() -> None:
    """Reset the global CostAggregator. Primarily useful for testing."""
    global _cost_aggregator
    with _aggregator_lock:
        _cost_aggregator = None
