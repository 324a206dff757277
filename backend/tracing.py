"""Trace events and span tracing for pipeline observability.

This module provides two purely observational facilities:

- Trace events: lifecycle records (pipeline_start, agent_end, llm_call, ...)
  dispatched to registered handlers. Handlers that raise are logged and
  skipped; tracing never changes pipeline control flow.
- Spans: per-agent timing/annotation records. ``create_tracer`` returns a
  recording tracer when tracing is enabled and a no-op tracer otherwise.

Usage:
    >>> register_trace_handler(my_handler)
    >>> trace_pipeline_start("TURN-1", session_id="s", user_id="u", turn_number=1)
    >>> tracer = create_tracer("TURN-1")
    >>> span = tracer.start_span("agent.mood_sensor", {"agent.id": "mood_sensor"})
    >>> span.add_event("circuit_open")
    >>> span.end()
"""

import time
import uuid
from collections.abc import Callable
from contextvars import ContextVar
from enum import StrEnum
from typing import Any, Literal, Protocol

import structlog
from pydantic import BaseModel, Field

from config import settings

logger = structlog.get_logger(__name__)

SpanAttributes = dict[str, str | int | float | bool | None]


class TraceEventType(StrEnum):
    """Trace event vocabulary emitted by the orchestrator and agents."""

    PIPELINE_START = "pipeline_start"
    PIPELINE_END = "pipeline_end"
    AGENT_START = "agent_start"
    AGENT_END = "agent_end"
    LLM_CALL = "llm_call"
    CRISIS_DETECTED = "crisis_detected"
    ERROR = "error"


class TraceCategory(StrEnum):
    PIPELINE = "pipeline"
    AGENT = "agent"
    LLM = "llm"
    SAFETY = "safety"


class TraceEvent(BaseModel):
    """A single lifecycle record.

    Attributes:
        type: The trace event type
        trace_id: Per-turn trace identifier
        timestamp: Unix timestamp in seconds
        category: Coarse grouping for filtering
        data: Event-specific payload
    """

    type: TraceEventType
    trace_id: str
    timestamp: float = Field(default_factory=time.time)
    category: TraceCategory | None = None
    data: dict[str, Any] = Field(default_factory=dict)


TraceHandler = Callable[[TraceEvent], None]

_trace_handlers: list[TraceHandler] = []


def register_trace_handler(handler: TraceHandler) -> None:
    """Register a handler; registering the same handler twice is a no-op."""
    if handler not in _trace_handlers:
        _trace_handlers.append(handler)


def unregister_trace_handler(handler: TraceHandler) -> None:
    """Remove a handler if it is registered."""
    if handler in _trace_handlers:
        _trace_handlers.remove(handler)


def emit_trace(event: TraceEvent) -> None:
    """Dispatch an event to every registered handler."""
    for handler in list(_trace_handlers):
        try:
            handler(event)
        except Exception as e:
            logger.warning(
                "trace_handler_failed",
                event_type=event.type.value,
                trace_id=event.trace_id,
                error=str(e),
            )


def trace_pipeline_start(
    trace_id: str, *, session_id: str, user_id: str, turn_number: int
) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.PIPELINE_START,
            trace_id=trace_id,
            category=TraceCategory.PIPELINE,
            data={
                "session_id": session_id,
                "user_id": user_id,
                "turn_number": turn_number,
            },
        )
    )


def trace_pipeline_end(
    trace_id: str,
    *,
    duration_ms: int,
    success: bool,
    crisis_detected: bool | None = None,
) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.PIPELINE_END,
            trace_id=trace_id,
            category=TraceCategory.PIPELINE,
            data={
                "duration_ms": duration_ms,
                "success": success,
                "crisis_detected": crisis_detected,
            },
        )
    )


def trace_agent_start(trace_id: str, agent_id: str) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.AGENT_START,
            trace_id=trace_id,
            category=TraceCategory.AGENT,
            data={"agent_id": agent_id},
        )
    )


def trace_agent_end(
    trace_id: str,
    agent_id: str,
    status: Literal["complete", "failed", "fallback"],
    duration_ms: int,
) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.AGENT_END,
            trace_id=trace_id,
            category=TraceCategory.AGENT,
            data={"agent_id": agent_id, "status": status, "duration_ms": duration_ms},
        )
    )


def trace_llm_call(
    trace_id: str,
    *,
    agent_id: str,
    model: str,
    duration_ms: int,
    input_tokens: int,
    output_tokens: int,
    estimated_cost: float,
    success: bool,
) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.LLM_CALL,
            trace_id=trace_id,
            category=TraceCategory.LLM,
            data={
                "agent_id": agent_id,
                "model": model,
                "duration_ms": duration_ms,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "estimated_cost": estimated_cost,
                "success": success,
            },
        )
    )


def trace_crisis(
    trace_id: str,
    *,
    severity: int,
    signal_type: str,
    confidence: float,
    session_id: str,
) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.CRISIS_DETECTED,
            trace_id=trace_id,
            category=TraceCategory.SAFETY,
            data={
                "severity": severity,
                "signal_type": signal_type,
                "confidence": confidence,
                "session_id": session_id,
            },
        )
    )


def trace_error(trace_id: str, agent_id: str, message: str) -> None:
    emit_trace(
        TraceEvent(
            type=TraceEventType.ERROR,
            trace_id=trace_id,
            category=TraceCategory.AGENT,
            data={"agent_id": agent_id, "message": message},
        )
    )


def log_trace_handler(event: TraceEvent) -> None:
    """Default handler: write trace events to the structured log."""
    if not settings.trace_enabled:
        return
    logger.info("trace_event", **event.model_dump(mode="json"))


# -----------------------------------------------------------------------------
# Spans
# -----------------------------------------------------------------------------


class Span(Protocol):
    """Timing/annotation record for one unit of work."""

    name: str

    def add_event(self, name: str, attributes: SpanAttributes | None = None) -> None: ...

    def set_status(self, status: Literal["ok", "error"], message: str | None = None) -> None: ...

    def end(self, attributes: SpanAttributes | None = None) -> None: ...


class Tracer(Protocol):
    def start_span(self, name: str, attributes: SpanAttributes | None = None) -> Span: ...

    def current_span(self) -> Span | None: ...


class NoOpSpan:
    """Span that records nothing."""

    name = ""

    def add_event(self, name: str, attributes: SpanAttributes | None = None) -> None:
        pass

    def set_status(self, status: Literal["ok", "error"], message: str | None = None) -> None:
        pass

    def end(self, attributes: SpanAttributes | None = None) -> None:
        pass


class RecordingSpan:
    """Span that keeps its events and writes itself to the log on end().

    Attributes:
        name: Span name (e.g. "agent.mood_sensor")
        trace_id: Owning trace
        span_id: Short random identifier
        parent_span_id: Span that was current when this one started
        attributes: Key/value annotations
        events: (name, monotonic timestamp, attributes) tuples
        status: "unset", "ok" or "error"
    """

    def __init__(
        self,
        name: str,
        trace_id: str,
        parent: "RecordingSpan | None" = None,
        attributes: SpanAttributes | None = None,
        on_end: Callable[["RecordingSpan"], None] | None = None,
    ) -> None:
        self.name = name
        self.trace_id = trace_id
        self.span_id = uuid.uuid4().hex[:8]
        self.parent = parent
        self.parent_span_id = parent.span_id if parent else None
        self.attributes: SpanAttributes = dict(attributes or {})
        self.events: list[tuple[str, float, SpanAttributes | None]] = []
        self.status: Literal["unset", "ok", "error"] = "unset"
        self.status_message: str | None = None
        self.start_time = time.perf_counter()
        self.end_time: float | None = None
        self._on_end = on_end

    def add_event(self, name: str, attributes: SpanAttributes | None = None) -> None:
        self.events.append((name, time.perf_counter(), attributes))

    def set_status(self, status: Literal["ok", "error"], message: str | None = None) -> None:
        self.status = status
        self.status_message = message
        if message:
            self.attributes["error.message"] = message

    def end(self, attributes: SpanAttributes | None = None) -> None:
        if self.end_time is not None:
            return
        self.end_time = time.perf_counter()
        if attributes:
            self.attributes.update(attributes)
        self.attributes["latency.ms"] = round((self.end_time - self.start_time) * 1000)
        logger.info(
            "span_end",
            trace_id=self.trace_id,
            span_id=self.span_id,
            parent_span_id=self.parent_span_id,
            span_name=self.name,
            status=self.status,
            status_message=self.status_message,
            attributes=self.attributes,
            events=[name for name, _, _ in self.events],
        )
        if self._on_end:
            self._on_end(self)


# Current span per RequestTracer key. Updates replace the dict, never mutate it.
_current_spans: ContextVar[dict[str, RecordingSpan] | None] = ContextVar(
    "current_spans", default=None
)


class RequestTracer:
    """Tracer scoped to one request.

    The current span is tracked in a module-level ContextVar keyed by
    tracer, so agents running as concurrent tasks each see their own span.
    """

    def __init__(self, trace_id: str) -> None:
        self.trace_id = trace_id
        self.spans: list[RecordingSpan] = []
        self._key = uuid.uuid4().hex

    def _set_current(self, span: RecordingSpan | None) -> None:
        spans = dict(_current_spans.get() or {})
        if span is None:
            spans.pop(self._key, None)
        else:
            spans[self._key] = span
        _current_spans.set(spans)

    def start_span(self, name: str, attributes: SpanAttributes | None = None) -> RecordingSpan:
        parent = self.current_span()
        span = RecordingSpan(
            name,
            self.trace_id,
            parent=parent,
            attributes=attributes,
            on_end=self._restore_parent,
        )
        self.spans.append(span)
        self._set_current(span)
        return span

    def current_span(self) -> RecordingSpan | None:
        return (_current_spans.get() or {}).get(self._key)

    def _restore_parent(self, span: RecordingSpan) -> None:
        if self.current_span() is span:
            self._set_current(span.parent)


class NoOpTracer:
    """Tracer that hands out a shared no-op span."""

    _span = NoOpSpan()

    def start_span(self, name: str, attributes: SpanAttributes | None = None) -> NoOpSpan:
        return self._span

    def current_span(self) -> None:
        return None


def create_tracer(trace_id: str, enabled: bool | None = None) -> RequestTracer | NoOpTracer:
    """Create a tracer for one request.

    Args:
        trace_id: Per-turn trace identifier
        enabled: Override for ``settings.trace_enabled``

    Returns:
        A RequestTracer when tracing is enabled, otherwise a NoOpTracer
    """
    if enabled is None:
        enabled = settings.trace_enabled
    if enabled:
        return RequestTracer(trace_id)
    return NoOpTracer()
