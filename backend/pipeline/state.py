"""Conversation state threaded through the Mollei pipeline.

The state is a ``TypedDict`` so it can double as the LangGraph state schema.
Two keys carry reducers: ``latency_ms`` (dict union) and ``agent_errors``
(list concatenation), so no agent's timing or error entry is ever lost to
overwrite when partial results are folded in. Every other key is
last-write-wins.
"""

import operator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated, Any, TypedDict

from pydantic import BaseModel, Field

from constants import PipelinePhase

if TYPE_CHECKING:
    from events.channel import StreamChannel
    from tracing import Tracer


# A sparse set of ConversationState fields contributed by one agent.
PartialResult = dict[str, Any]


def merge_latency(left: dict[str, int], right: dict[str, int]) -> dict[str, int]:
    """Union two latency maps; keys from ``right`` win on collision."""
    return {**left, **right}


class EmotionState(BaseModel):
    """An emotional reading, either the user's or Mollei's own.

    Attributes:
        primary: Dominant emotion label.
        secondary: Optional secondary emotion label.
        intensity: Strength of the emotion, 0 to 1.
        valence: Negative to positive, -1 to 1.
        signals: Textual cues that support the reading.
        ambiguity_notes: Why the reading may be uncertain, if it is.
    """

    primary: str
    secondary: str | None = None
    intensity: float = Field(ge=0.0, le=1.0)
    valence: float = Field(ge=-1.0, le=1.0)
    signals: list[str] = Field(default_factory=list)
    ambiguity_notes: str | None = None


class ConversationState(TypedDict, total=False):
    """State for one chat turn.

    Required on creation: session_id, user_id, trace_id, turn_number,
    user_message, latency_ms, agent_errors, phase. Everything else is filled
    in by agents.

    Attributes:
        session_id: Conversation session identifier
        user_id: Identifier of the user sending the message
        trace_id: Per-turn trace identifier
        turn_number: Turn index within the session (>= 0)
        user_message: The sanitized user message
        user_emotion: EmotionState dump from the Mood Sensor
        mollei_emotion: EmotionState dump from the Emotion Reasoner
        context_summary: Memory Agent summary of recent turns
        emotional_trajectory: improving / stable / declining
        callback_opportunities: Earlier topics worth referring back to
        recurring_themes: Themes that keep coming up
        crisis_detected: Whether the Safety Monitor flagged a crisis
        crisis_severity: 1 (proceed) .. 5 (immediate danger)
        crisis_signal_type: SignalType value
        crisis_confidence: Safety Monitor confidence, 0 to 1
        suggested_response_modifier: ResponseModifier value
        presence_quality: How Mollei should show up in the reply
        approach: ApproachType value chosen by the Emotion Reasoner
        response: Final reply text
        model_used: Model that generated the reply
        latency_ms: Agent id -> elapsed milliseconds (plus "total")
        agent_errors: Error messages from failed agents, in arrival order
        phase: PipelinePhase value
        stream_aborted: True once the orchestrator observed an aborted stream
    """

    session_id: str
    user_id: str
    trace_id: str
    turn_number: int
    user_message: str
    user_emotion: dict[str, Any]
    mollei_emotion: dict[str, Any]
    context_summary: str
    emotional_trajectory: str
    callback_opportunities: list[str]
    recurring_themes: list[str]
    crisis_detected: bool
    crisis_severity: int
    crisis_signal_type: str
    crisis_confidence: float
    suggested_response_modifier: str
    presence_quality: str
    approach: str
    response: str
    model_used: str
    latency_ms: Annotated[dict[str, int], merge_latency]
    agent_errors: Annotated[list[str], operator.add]
    phase: str
    stream_aborted: bool


def create_initial_state(
    session_id: str,
    user_id: str,
    trace_id: str,
    turn_number: int,
    user_message: str,
) -> ConversationState:
    """Create the initial state for one pipeline run.

    Args:
        session_id: Conversation session identifier
        user_id: User identifier
        trace_id: Per-turn trace identifier
        turn_number: Turn index within the session
        user_message: The sanitized user message

    Returns:
        Initial ConversationState dict

    Raises:
        ValueError: If turn_number is negative
    """
    if turn_number < 0:
        raise ValueError(f"turn_number must be >= 0, got {turn_number}")

    return ConversationState(
        session_id=session_id,
        user_id=user_id,
        trace_id=trace_id,
        turn_number=turn_number,
        user_message=user_message,
        latency_ms={},
        agent_errors=[],
        phase=PipelinePhase.IDLE.value,
    )


@dataclass(frozen=True)
class PipelineContext:
    """Immutable per-request bundle handed to every agent.

    Attributes:
        trace_id: Per-turn trace identifier
        session_id: Conversation session identifier
        user_id: User identifier
        turn_number: Turn index within the session
        stream: Optional streaming channel to the caller
        tracer: Optional span tracer
    """

    trace_id: str
    session_id: str
    user_id: str
    turn_number: int
    stream: "StreamChannel | None" = None
    tracer: "Tracer | None" = None

    @property
    def stream_aborted(self) -> bool:
        """True if a streaming channel exists and has been aborted."""
        return self.stream is not None and self.stream.aborted
