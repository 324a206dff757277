"""Shared execution contract for pipeline agents.

An agent is anything that satisfies ``AgentStage``: a config, a pure
``fallback(state)`` and an async ``run(state, ctx)``. The resilience behavior
lives in one free function, ``execute_stage``, which any conforming stage can
be passed through:

1. Start a span and an ``agent_start`` trace event
2. Ask the circuit breaker; if denied, return the fallback (status "fallback")
3. Race ``run`` against the agent's deadline with ``asyncio.wait_for``
4. On success record success and return the run result
5. On exception or timeout record failure and return fallback + error

Every outcome carries ``latency_ms = {agent_id: elapsed}``. ``execute_stage``
never raises for agent failures; only cancellation propagates.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Literal, Protocol

import structlog

from constants import AgentId
from pipeline.state import ConversationState, PartialResult, PipelineContext
from resilience import CircuitBreakerProtocol, get_circuit_breaker_registry
from tracing import NoOpTracer, trace_agent_end, trace_agent_start, trace_error

logger = structlog.get_logger(__name__)

AgentStatus = Literal["complete", "failed", "fallback"]


@dataclass(frozen=True)
class AgentConfig:
    """Static configuration for one agent.

    Attributes:
        agent_id: Identifier used for breakers, latency keys and traces
        timeout_ms: Deadline for one ``run`` call
        model: Model the agent calls by default (informational for spans)
    """

    agent_id: AgentId
    timeout_ms: int
    model: str | None = None


class AgentStage(Protocol):
    """What a concrete agent must provide."""

    config: AgentConfig

    def fallback(self, state: ConversationState) -> PartialResult: ...

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult: ...


async def execute_stage(
    stage: AgentStage,
    state: ConversationState,
    ctx: PipelineContext,
    breaker: CircuitBreakerProtocol,
) -> PartialResult:
    """Run one stage under timeout, circuit breaking and fallback.

    Args:
        stage: The agent logic to run
        state: Cumulative conversation state (read only)
        ctx: Per-request pipeline context
        breaker: Circuit breaker guarding this agent

    Returns:
        The stage's partial result, or its fallback, with ``latency_ms`` set
        and ``agent_errors`` set on failure
    """
    agent_id = stage.config.agent_id.value
    start = time.perf_counter()
    tracer = ctx.tracer or NoOpTracer()
    span = tracer.start_span(
        f"agent.{agent_id}",
        {"agent.id": agent_id, "agent.model": stage.config.model, "trace.id": ctx.trace_id},
    )
    trace_agent_start(ctx.trace_id, agent_id)

    def finish(result: PartialResult, status: AgentStatus) -> PartialResult:
        duration_ms = max(0, round((time.perf_counter() - start) * 1000))
        trace_agent_end(ctx.trace_id, agent_id, status, duration_ms)
        span.end({"agent.status": status})
        return {**result, "latency_ms": {agent_id: duration_ms}}

    if not breaker.allow_request():
        logger.info("agent_circuit_open", agent_id=agent_id, trace_id=ctx.trace_id)
        span.add_event("circuit_open")
        span.set_status("ok")
        return finish(stage.fallback(state), "fallback")

    timeout_ms = stage.config.timeout_ms
    try:
        result = await asyncio.wait_for(stage.run(state, ctx), timeout=timeout_ms / 1000)
    except TimeoutError:
        error_message = f"{agent_id} timed out after {timeout_ms}ms"
    except Exception as e:
        error_message = str(e) or type(e).__name__
    else:
        breaker.record_success()
        span.set_status("ok")
        return finish(result, "complete")

    breaker.record_failure()
    logger.warning(
        "agent_failed",
        agent_id=agent_id,
        trace_id=ctx.trace_id,
        error=error_message,
    )
    span.set_status("error", error_message)
    trace_error(ctx.trace_id, agent_id, error_message)
    return finish({**stage.fallback(state), "agent_errors": [error_message]}, "failed")


class ResilientAgent:
    """Base class composing a stage with its circuit breaker.

    Subclasses set ``config`` and implement ``fallback`` and ``run``. The
    breaker comes from the process-wide registry unless one is injected.
    """

    config: AgentConfig

    def __init__(self, circuit_breaker: CircuitBreakerProtocol | None = None) -> None:
        self.circuit_breaker = circuit_breaker or get_circuit_breaker_registry().get(
            self.config.agent_id.value
        )

    @property
    def agent_id(self) -> str:
        return self.config.agent_id.value

    def fallback(self, state: ConversationState) -> PartialResult:
        raise NotImplementedError

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        raise NotImplementedError

    async def execute(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        """Run this agent through ``execute_stage``; never raises for agent failures."""
        return await execute_stage(self, state, ctx, self.circuit_breaker)
