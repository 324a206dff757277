"""Shared test fixtures for backend tests.

Provides a scripted LLM client, a recording stream channel, state and
context factories, and resets for the process-wide singletons so tests
never touch a real model API or leak breaker state between each other.
"""

import asyncio
import sys
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from agents.base import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(__import__("pathlib").Path(__file__).resolve().parent.parent)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.utils import LLMClient  # noqa: E402
from cache import ConversationCache, InMemoryConversationCache, reset_conversation_cache  # noqa: E402
from constants import AgentId  # noqa: E402
from metrics import reset_cost_aggregator  # noqa: E402
from pipeline.state import ConversationState, PipelineContext, create_initial_state  # noqa: E402
from resilience import CircuitBreakerRegistry, reset_circuit_breaker_registry  # noqa: E402
from tracing import RequestTracer, TraceEvent, _trace_handlers  # noqa: E402

# ---------------------------------------------------------------------------
# Canned agent outputs (camelCase, as a model would return them)
# ---------------------------------------------------------------------------

MOOD_OUTPUT: dict[str, Any] = {
    "primary": "sadness",
    "secondary": "fatigue",
    "intensity": 0.8,
    "valence": -0.6,
    "signals": ["rough week"],
}

MEMORY_OUTPUT: dict[str, Any] = {
    "contextSummary": "User has been stressed about work.",
    "callbackOpportunities": ["the project deadline"],
    "relationshipStage": "building",
    "recurringThemes": ["work stress"],
    "emotionalTrajectory": "declining",
}

SAFETY_CRISIS_OUTPUT: dict[str, Any] = {
    "crisisDetected": True,
    "severity": 4,
    "signalType": "suicidal_ideation",
    "confidence": 0.9,
    "keyPhrases": ["don't want to be alive"],
    "suggestedResponseModifier": "crisis_resources",
}

REASONER_OUTPUT: dict[str, Any] = {
    "primary": "compassion",
    "energy": 0.5,
    "approach": "validate",
    "toneModifiers": ["gentle"],
    "presenceQuality": "steady and unhurried",
}

# ---------------------------------------------------------------------------
# Scripted LLM client
# ---------------------------------------------------------------------------


@dataclass
class ScriptedCall:
    """One recorded call on the scripted client."""

    kind: str
    agent_id: str | None
    model: str | None
    messages: list[dict[str, Any]]
    temperature: float | None = None


@dataclass
class ScriptedLLMClient(LLMClient):
    """LLMClient that answers from per-agent scripts instead of a provider.

    Each script maps an agent id to a value:
    - objects: a dict (validated against the requested schema) or an exception
    - texts: a string or an exception
    - streams: a list of chunks, or an exception raised before the first chunk
    - delays: seconds to sleep before answering (to trigger timeouts)
    """

    objects: dict[str, Any] = field(default_factory=dict)
    texts: dict[str, Any] = field(default_factory=dict)
    streams: dict[str, Any] = field(default_factory=dict)
    delays: dict[str, float] = field(default_factory=dict)
    call_history: list[ScriptedCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(default_model="test/fast-model", request_timeout=1.0)

    def calls_for(self, agent_id: str) -> list[ScriptedCall]:
        return [call for call in self.call_history if call.agent_id == agent_id]

    async def _answer(self, kind: str, agent_id: str | None, script: dict[str, Any]) -> Any:
        delay = self.delays.get(agent_id or "")
        if delay:
            await asyncio.sleep(delay)
        if agent_id not in script:
            raise AssertionError(f"no scripted {kind} for agent {agent_id!r}")
        value = script[agent_id]
        if isinstance(value, BaseException):
            raise value
        return value

    async def generate_object(  # type: ignore[override]
        self,
        messages: list[dict[str, Any]],
        schema: Any,
        *,
        model: str | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> Any:
        self.call_history.append(ScriptedCall("object", agent_id, model, messages, temperature))
        value = await self._answer("object", agent_id, self.objects)
        return schema.model_validate(value)

    async def generate_text(  # type: ignore[override]
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        self.call_history.append(ScriptedCall("text", agent_id, model, messages, temperature))
        return await self._answer("text", agent_id, self.texts)

    async def stream_text(  # type: ignore[override]
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        self.call_history.append(ScriptedCall("stream", agent_id, model, messages, temperature))
        chunks = await self._answer("stream", agent_id, self.streams)
        for chunk in chunks:
            await asyncio.sleep(0)
            yield chunk


def make_scripted_llm(
    *,
    response_text: str = "That sounds really hard. I'm here with you.",
    safety: dict[str, Any] | None = None,
    objects: dict[str, Any] | None = None,
    **overrides: Any,
) -> ScriptedLLMClient:
    """Scripted client where every agent succeeds with a canned answer."""
    scripted: dict[str, Any] = {
        AgentId.MOOD_SENSOR: MOOD_OUTPUT,
        AgentId.MEMORY_AGENT: MEMORY_OUTPUT,
        AgentId.SAFETY_MONITOR: safety or SAFETY_CRISIS_OUTPUT,
        AgentId.EMOTION_REASONER: REASONER_OUTPUT,
    }
    scripted.update(objects or {})
    return ScriptedLLMClient(
        objects={str(k): v for k, v in scripted.items()},
        texts={AgentId.RESPONSE_GENERATOR.value: response_text},
        streams={AgentId.RESPONSE_GENERATOR.value: [response_text[:10], response_text[10:]]},
        **overrides,
    )


@pytest.fixture()
def scripted_llm() -> ScriptedLLMClient:
    return make_scripted_llm()


# ---------------------------------------------------------------------------
# Recording stream channel
# ---------------------------------------------------------------------------


class RecordingStreamChannel:
    """StreamChannel that keeps every event in a list.

    ``abort_after`` aborts the channel once that many events were recorded,
    simulating a client that disconnects mid-turn.
    """

    def __init__(self, abort_after: int | None = None) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.closed = False
        self._aborted = False
        self._abort_after = abort_after

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        self._aborted = True

    def _record(self, kind: str, payload: dict[str, Any]) -> None:
        if self._aborted or self.closed:
            return
        self.events.append((kind, payload))
        if self._abort_after is not None and len(self.events) >= self._abort_after:
            self._aborted = True

    async def send_progress(self, phase: str, message: str) -> None:
        self._record("progress", {"phase": phase, "message": message})

    async def send_event(self, kind: str, payload: dict[str, Any]) -> None:
        self._record(kind, payload)

    async def send_result(self, payload: dict[str, Any]) -> None:
        self._record("result", payload)

    async def send_error(self, message: str) -> None:
        self._record("error", {"message": message})

    async def close(self) -> None:
        self.closed = True

    def of_kind(self, kind: str) -> list[dict[str, Any]]:
        return [payload for event_kind, payload in self.events if event_kind == kind]


@pytest.fixture()
def recording_channel() -> RecordingStreamChannel:
    return RecordingStreamChannel()


# ---------------------------------------------------------------------------
# State / context factories
# ---------------------------------------------------------------------------


def make_state(
    user_message: str = "I've had a really rough week at work.",
    turn_number: int = 1,
    **fields: Any,
) -> ConversationState:
    state = create_initial_state(
        session_id="session-1",
        user_id="user-1",
        trace_id="TURN-test0001",
        turn_number=turn_number,
        user_message=user_message,
    )
    return ConversationState(**{**state, **fields})


def make_context(
    stream: Any = None,
    tracer: Any = None,
    turn_number: int = 1,
) -> PipelineContext:
    return PipelineContext(
        trace_id="TURN-test0001",
        session_id="session-1",
        user_id="user-1",
        turn_number=turn_number,
        stream=stream,
        tracer=tracer,
    )


@pytest.fixture()
def state() -> ConversationState:
    return make_state()


@pytest.fixture()
def ctx() -> PipelineContext:
    return make_context(tracer=RequestTracer("TURN-test0001"))


# ---------------------------------------------------------------------------
# Collaborators and singleton resets
# ---------------------------------------------------------------------------


@pytest.fixture()
def registry() -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry()


@pytest.fixture()
def cache() -> ConversationCache:
    return ConversationCache(InMemoryConversationCache())


@pytest.fixture()
def trace_events() -> Iterator[list[TraceEvent]]:
    """Collect every trace event emitted during the test."""
    collected: list[TraceEvent] = []
    _trace_handlers.append(collected.append)
    yield collected
    _trace_handlers.remove(collected.append)


@pytest.fixture(autouse=True)
def _reset_singletons() -> Iterator[None]:
    reset_circuit_breaker_registry()
    reset_conversation_cache()
    reset_cost_aggregator()
    handlers_before = list(_trace_handlers)
    yield
    _trace_handlers[:] = handlers_before
    reset_circuit_breaker_registry()
    reset_conversation_cache()
    reset_cost_aggregator()

