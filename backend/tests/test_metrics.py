"""Tests for metrics.py -- per-trace cost aggregation."""

import pytest

from metrics import CostAggregator, get_cost_aggregator, reset_cost_aggregator
from tracing import TraceEvent, TraceEventType

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _start(trace_id: str, ts: float = 100.0) -> TraceEvent:
    return TraceEvent(type=TraceEventType.PIPELINE_START, trace_id=trace_id, timestamp=ts)


def _end(trace_id: str, ts: float = 101.5) -> TraceEvent:
    return TraceEvent(
        type=TraceEventType.PIPELINE_END,
        trace_id=trace_id,
        timestamp=ts,
        data={"duration_ms": 1500, "success": True},
    )


def _llm(
    trace_id: str,
    agent_id: str = "mood_sensor",
    cost: float = 0.001,
    duration_ms: int = 100,
    success: bool = True,
) -> TraceEvent:
    return TraceEvent(
        type=TraceEventType.LLM_CALL,
        trace_id=trace_id,
        data={
            "agent_id": agent_id,
            "model": "test/fast-model",
            "duration_ms": duration_ms,
            "input_tokens": 200,
            "output_tokens": 40,
            "estimated_cost": cost,
            "success": success,
        },
    )


@pytest.fixture()
def aggregator() -> CostAggregator:
    return CostAggregator(max_traces=3, log_summaries=True)


# =========================================================================
# Lifecycle
# =========================================================================


class TestCostAggregator:
    def test_open_accumulate_close(self, aggregator: CostAggregator) -> None:
        aggregator.handle(_start("T1"))
        aggregator.handle(_llm("T1", "mood_sensor", cost=0.001, duration_ms=100))
        aggregator.handle(_llm("T1", "mood_sensor", cost=0.002, duration_ms=300))
        aggregator.handle(_llm("T1", "response_generator", cost=0.01))

        running = aggregator.get("T1")
        assert running is not None
        assert running.end_time is None

        aggregator.handle(_end("T1"))
        summary = aggregator.get("T1")
        assert summary is not None
        assert summary.end_time == 101.5
        assert summary.total_calls == 3
        assert summary.total_cost == pytest.approx(0.013)
        assert summary.total_input_tokens == 600
        assert summary.total_output_tokens == 120
        mood = summary.by_agent["mood_sensor"]
        assert mood.calls == 2
        assert mood.avg_duration_ms == pytest.approx(200.0)

    def test_failed_calls_ignored(self, aggregator: CostAggregator) -> None:
        aggregator.handle(_start("T1"))
        aggregator.handle(_llm("T1", success=False))
        summary = aggregator.get("T1")
        assert summary is not None
        assert summary.total_calls == 0
        assert summary.by_agent == {}

    def test_calls_for_unknown_trace_ignored(self, aggregator: CostAggregator) -> None:
        aggregator.handle(_llm("never-started"))
        aggregator.handle(_end("never-started"))
        assert aggregator.get("never-started") is None

    def test_oldest_trace_evicted(self, aggregator: CostAggregator) -> None:
        for trace_id in ("T1", "T2", "T3", "T4"):
            aggregator.handle(_start(trace_id))
        assert aggregator.get("T1") is None
        assert [s.trace_id for s in aggregator.all()] == ["T2", "T3", "T4"]

    def test_clear(self, aggregator: CostAggregator) -> None:
        aggregator.handle(_start("T1"))
        aggregator.clear("T1")
        aggregator.clear("T1")
        assert aggregator.get("T1") is None

    def test_unrelated_events_ignored(self, aggregator: CostAggregator) -> None:
        aggregator.handle(TraceEvent(type=TraceEventType.AGENT_START, trace_id="T1"))
        assert aggregator.all() == []


class TestGlobalAggregator:
    def test_singleton_and_reset(self) -> None:
        first = get_cost_aggregator()
        assert get_cost_aggregator() is first
        reset_cost_aggregator()
        assert get_cost_aggregator() is not first
