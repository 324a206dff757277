"""HTTP API routes for the Mollei backend.

This module defines the chat endpoints (plain JSON and server-sent events),
per-turn cost lookup and the health check.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import APIRouter, HTTPException, Path, status
from fastapi.responses import StreamingResponse

from constants import GENERIC_ERROR_MESSAGE
from events import QueueStreamChannel
from metrics import get_cost_aggregator
from models.schemas import (
    AgentCostBreakdown,
    ChatRequest,
    ChatResponse,
    CostSummaryResponse,
    HealthResponse,
)

if TYPE_CHECKING:
    from chat_service import ChatService

logger = structlog.get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

# Pipeline tasks outlive the response generator when a client disconnects
_stream_tasks: set[asyncio.Task[None]] = set()

# Chat service dependency (set during application startup)
_chat_service: ChatService | None = None


def set_chat_service(service: ChatService | None) -> None:
    """Set the chat service instance for the routes.

    This should be called during application startup to inject the chat
    service dependency.

    Args:
        service: The ChatService instance to use for all routes.
    """
    global _chat_service
    _chat_service = service
    logger.info("chat_service_configured")


def get_chat_service() -> ChatService:
    """Get the chat service instance.

    Returns:
        The configured ChatService instance.

    Raises:
        RuntimeError: If the chat service has not been configured.
    """
    if _chat_service is None:
        logger.error("chat_service_not_configured")
        raise RuntimeError("ChatService not configured. Call set_chat_service() during startup.")
    return _chat_service


def _session_id(request: ChatRequest) -> str | None:
    return str(request.session_id) if request.session_id else None


@router.post(
    "/api/chat",
    response_model=ChatResponse,
    summary="Send a chat message",
    description="Run one turn through the pipeline and return the full reply.",
)
async def chat(request: ChatRequest) -> ChatResponse:
    """Run one chat turn and return the final reply.

    Raises:
        HTTPException: 500 with a generic message if the pipeline fails.
    """
    service = get_chat_service()
    turn = await service.prepare_turn(request.message, session_id=_session_id(request))

    try:
        final_state = await service.run_turn(turn)
    except Exception as e:
        logger.error(
            "chat_turn_failed",
            trace_id=turn.trace_id,
            session_id=turn.session_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=GENERIC_ERROR_MESSAGE,
        ) from e

    return ChatResponse(**service.result_payload(turn, final_state))


@router.post(
    "/api/chat/stream",
    summary="Send a chat message (streaming)",
    description="Run one turn and stream progress, response deltas and the "
    "final result as server-sent events.",
    response_class=StreamingResponse,
)
async def chat_stream(request: ChatRequest) -> StreamingResponse:
    """Stream one chat turn as server-sent events.

    Event types are ``progress``, ``delta``, ``result``, ``error`` and
    ``heartbeat``. If the client disconnects, the channel is aborted so the
    pipeline stops before its next stage and the turn is not cached.
    """
    service = get_chat_service()
    turn = await service.prepare_turn(request.message, session_id=_session_id(request))
    channel = QueueStreamChannel(trace_id=turn.trace_id)

    task = asyncio.create_task(service.stream_turn(turn, channel))
    _stream_tasks.add(task)
    task.add_done_callback(_stream_tasks.discard)

    logger.info(
        "stream_started",
        trace_id=turn.trace_id,
        session_id=turn.session_id,
        turn_number=turn.turn_number,
    )

    async def event_source() -> AsyncIterator[str]:
        start = time.perf_counter()
        completed = False
        try:
            async for event in channel.events():
                yield event.to_sse()
            completed = True
        finally:
            if not completed and not task.done():
                channel.abort()
            logger.info(
                "stream_ended",
                trace_id=turn.trace_id,
                duration_ms=round((time.perf_counter() - start) * 1000),
                aborted=channel.aborted,
            )

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get(
    "/api/traces/{trace_id}/cost",
    response_model=CostSummaryResponse,
    summary="Get estimated cost of a turn",
    description="Token usage and estimated LLM cost for one pipeline run.",
)
async def get_trace_cost(
    trace_id: Annotated[str, Path(description="Trace id, e.g. TURN-1a2b3c4d")],
) -> CostSummaryResponse:
    """Return the cost summary recorded for a trace.

    Raises:
        HTTPException: 404 if the trace is unknown or has been evicted.
    """
    summary = get_cost_aggregator().get(trace_id)
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No cost summary for trace {trace_id}",
        )

    return CostSummaryResponse(
        trace_id=summary.trace_id,
        total_cost=summary.total_cost,
        total_input_tokens=summary.total_input_tokens,
        total_output_tokens=summary.total_output_tokens,
        total_calls=summary.total_calls,
        total_duration_ms=summary.total_duration_ms,
        by_agent={
            agent_id: AgentCostBreakdown(
                calls=stats.calls,
                cost=stats.cost,
                input_tokens=stats.input_tokens,
                output_tokens=stats.output_tokens,
                avg_duration_ms=stats.avg_duration_ms,
            )
            for agent_id, stats in summary.by_agent.items()
        },
        complete=summary.end_time is not None,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with circuit breaker status per agent.",
)
async def health_check() -> HealthResponse:
    """Report service health.

    The status is ``degraded`` while any agent's circuit is open or
    half-open; the service still answers in that state, using fallbacks.
    """
    circuits = _chat_service.registry.snapshot() if _chat_service is not None else {}
    degraded = any(state != "closed" for state in circuits.values())

    return HealthResponse(
        status="degraded" if degraded else "healthy",
        timestamp=time.time(),
        circuits=circuits,
    )
