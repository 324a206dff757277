"""Chat service coordinating one Mollei turn end to end.

This module provides the ChatService class that sits between the HTTP layer
and the pipeline. For each incoming message it:
- Sanitizes the text and logs suspicious input
- Resolves the session id, trace id and next turn number
- Builds fresh agent instances sharing the registry's circuit breakers
- Runs the orchestrator, optionally streaming progress and deltas
- Caches the completed turn and writes crisis audit log entries

Usage:
    >>> service = ChatService()
    >>> turn = await service.prepare_turn("I can't sleep again", session_id=None)
    >>> state = await service.run_turn(turn)
    >>> print(state["response"])
"""

import uuid
from dataclasses import dataclass

import structlog

from agents import (
    EmotionReasoner,
    LLMClient,
    MemoryAgent,
    MoodSensor,
    ResponseGenerator,
    SafetyMonitor,
)
from cache import CachedTurn, ConversationCache, get_conversation_cache
from constants import FALLBACK_RESPONSE, GENERIC_ERROR_MESSAGE, AgentId
from events.channel import StreamChannel
from pipeline import (
    ConversationState,
    PipelineAgent,
    PipelineContext,
    create_initial_state,
    create_pipeline,
)
from resilience import CircuitBreakerRegistry, get_circuit_breaker_registry
from security import log_suspicious_input, sanitize_user_input
from tracing import create_tracer

logger = structlog.get_logger(__name__)


def new_trace_id() -> str:
    """Generate a per-turn trace id such as ``TURN-1a2b3c4d``."""
    return f"TURN-{uuid.uuid4().hex[:8]}"


@dataclass
class PreparedTurn:
    """A sanitized message with all identifiers resolved.

    Attributes:
        session_id: Session the turn belongs to (generated if new)
        user_id: Identifier of the sender
        trace_id: Per-turn trace identifier
        turn_number: 1-based index within the session
        message: Sanitized message text
    """

    session_id: str
    user_id: str
    trace_id: str
    turn_number: int
    message: str


class ChatService:
    """Runs chat turns through the Mollei pipeline.

    The service owns the long-lived collaborators (model client, cache,
    breaker registry). Agents themselves are cheap and built per request.

    Attributes:
        llm: Model client shared by every agent
        cache: Conversation history cache
        registry: Circuit breakers keyed by agent id
    """

    def __init__(
        self,
        llm: LLMClient | None = None,
        cache: ConversationCache | None = None,
        registry: CircuitBreakerRegistry | None = None,
    ) -> None:
        self.llm = llm or LLMClient()
        self.cache = cache or get_conversation_cache()
        self.registry = registry or get_circuit_breaker_registry()

    def create_agents(self) -> tuple[list[PipelineAgent], list[PipelineAgent]]:
        """Build the parallel and sequential agent groups for one request."""
        parallel: list[PipelineAgent] = [
            MoodSensor(self.llm, circuit_breaker=self.registry.get(AgentId.MOOD_SENSOR)),
            MemoryAgent(
                self.llm,
                cache=self.cache,
                circuit_breaker=self.registry.get(AgentId.MEMORY_AGENT),
            ),
            SafetyMonitor(self.llm, circuit_breaker=self.registry.get(AgentId.SAFETY_MONITOR)),
        ]
        sequential: list[PipelineAgent] = [
            EmotionReasoner(
                self.llm, circuit_breaker=self.registry.get(AgentId.EMOTION_REASONER)
            ),
            ResponseGenerator(
                self.llm, circuit_breaker=self.registry.get(AgentId.RESPONSE_GENERATOR)
            ),
        ]
        return parallel, sequential

    async def prepare_turn(
        self,
        message: str,
        session_id: str | None = None,
        user_id: str = "anonymous",
    ) -> PreparedTurn:
        """Sanitize a message and resolve the ids for its turn.

        Args:
            message: Raw user message
            session_id: Existing session id, or None to start a new session
            user_id: Sender identifier

        Returns:
            PreparedTurn ready for ``run_turn`` or ``stream_turn``
        """
        trace_id = new_trace_id()
        result = sanitize_user_input(message)
        log_suspicious_input(trace_id, len(message), result)

        resolved_session = session_id or str(uuid.uuid4())
        turn_number = await self.cache.get_next_turn_number(resolved_session)

        return PreparedTurn(
            session_id=resolved_session,
            user_id=user_id,
            trace_id=trace_id,
            turn_number=turn_number,
            message=result.sanitized,
        )

    async def run_turn(
        self, turn: PreparedTurn, stream: StreamChannel | None = None
    ) -> ConversationState:
        """Run the pipeline for a prepared turn.

        The turn is cached unless the stream was aborted mid-run.

        Args:
            turn: Output of ``prepare_turn``
            stream: Optional channel for progress and response deltas

        Returns:
            The final ConversationState
        """
        ctx = PipelineContext(
            trace_id=turn.trace_id,
            session_id=turn.session_id,
            user_id=turn.user_id,
            turn_number=turn.turn_number,
            stream=stream,
            tracer=create_tracer(turn.trace_id),
        )
        initial_state = create_initial_state(
            session_id=turn.session_id,
            user_id=turn.user_id,
            trace_id=turn.trace_id,
            turn_number=turn.turn_number,
            user_message=turn.message,
        )

        parallel, sequential = self.create_agents()
        final_state = await create_pipeline(parallel, sequential).run(initial_state, ctx)

        if final_state.get("crisis_detected"):
            self._audit_crisis(turn, final_state)

        if ctx.stream_aborted or final_state.get("stream_aborted"):
            logger.info("turn_not_cached_stream_aborted", trace_id=turn.trace_id)
        else:
            await self._cache_turn(turn, final_state)

        return final_state

    async def stream_turn(self, turn: PreparedTurn, channel: StreamChannel) -> None:
        """Run a turn against a streaming channel and finish with a result event.

        Errors are reported to the client with a generic message. The channel
        is always closed, so a consumer iterating it will terminate.
        """
        try:
            final_state = await self.run_turn(turn, stream=channel)
            if not channel.aborted:
                await channel.send_result(self.result_payload(turn, final_state))
        except Exception as e:
            logger.error(
                "stream_turn_failed",
                trace_id=turn.trace_id,
                session_id=turn.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            if not channel.aborted:
                await channel.send_error(GENERIC_ERROR_MESSAGE)
        finally:
            await channel.close()

    @staticmethod
    def result_payload(turn: PreparedTurn, state: ConversationState) -> dict[str, object]:
        """Build the final result body sent to the client."""
        return {
            "session_id": turn.session_id,
            "response": state.get("response") or FALLBACK_RESPONSE,
            "turn_number": turn.turn_number,
            "crisis_detected": bool(state.get("crisis_detected")),
            "latency_ms": state.get("latency_ms", {}).get("total", 0),
        }

    async def _cache_turn(self, turn: PreparedTurn, state: ConversationState) -> None:
        await self.cache.cache_turn(
            CachedTurn(
                session_id=turn.session_id,
                turn_number=turn.turn_number,
                user_message=turn.message,
                mollei_response=state.get("response") or FALLBACK_RESPONSE,
                user_emotion=state.get("user_emotion") or {},
                mollei_emotion=state.get("mollei_emotion") or {},
                crisis_detected=state.get("crisis_detected"),
                crisis_severity=state.get("crisis_severity"),
                latency_ms=state.get("latency_ms", {}).get("total"),
            )
        )

    def _audit_crisis(self, turn: PreparedTurn, state: ConversationState) -> None:
        # Audit entries carry ids and classification only, never message text
        logger.warning(
            "crisis_audit",
            trace_id=turn.trace_id,
            session_id=turn.session_id,
            user_id=turn.user_id,
            turn_number=turn.turn_number,
            severity=state.get("crisis_severity"),
            signal_type=state.get("crisis_signal_type"),
            confidence=state.get("crisis_confidence"),
            modifier=state.get("suggested_response_modifier"),
        )
