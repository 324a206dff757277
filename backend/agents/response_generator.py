"""Response Generator: writes Mollei's reply.

Builds a composite prompt from the cumulative state, picks the crisis model
when severity is at least CRISIS_SUPPORT, streams deltas to the client when a
live channel exists (otherwise makes one whole-text call), and finally
appends the severity-band footer.
"""

import json
from contextlib import aclosing
from typing import Any, Literal

from agents.base import AgentConfig, ResilientAgent
from agents.crisis_resources import apply_severity_modifier
from agents.prompts import RESPONSE_GENERATOR_PROMPT
from agents.utils import LLMClient
from config import settings
from constants import (
    FALLBACK_RESPONSE,
    AgentId,
    ApproachType,
    CrisisSeverity,
    ResponseModifier,
)
from events.types import StreamEventType
from pipeline.state import ConversationState, PartialResult, PipelineContext
from resilience import CircuitBreakerProtocol

ClarityLevel = Literal["clear", "moderate", "uncertain"]

AMBIGUITY_DISCOUNT = 0.7

CLARITY_GUIDANCE: dict[ClarityLevel, str] = {
    "clear": 'The emotion is clear. Name it directly: "It sounds like you\'re feeling..."',
    "moderate": 'The emotion is fairly clear. Offer it tentatively: "I\'m sensing there might be..."',
    "uncertain": (
        "The emotion is uncertain. Check your understanding before naming it: "
        '"I want to make sure I understand..."'
    ),
}


def emotion_clarity_score(user_emotion: dict[str, Any] | None) -> float:
    """Intensity, discounted when the reading carries ambiguity notes."""
    if not user_emotion:
        return 0.0
    intensity = float(user_emotion.get("intensity", 0.0))
    if user_emotion.get("ambiguity_notes"):
        return intensity * AMBIGUITY_DISCOUNT
    return intensity


def clarity_level(score: float) -> ClarityLevel:
    if score >= 0.7:
        return "clear"
    if score >= 0.4:
        return "moderate"
    return "uncertain"


def conversation_phase(turn_number: int) -> str:
    if turn_number < 3:
        return "early"
    if turn_number < 10:
        return "building"
    return "established"


def build_response_prompt(state: ConversationState) -> str:
    """Render the cumulative state into the generator's user message."""
    clarity = emotion_clarity_score(state.get("user_emotion"))
    level = clarity_level(clarity)
    if state.get("crisis_detected"):
        crisis_status = f"CRISIS DETECTED (severity {state.get('crisis_severity')})"
    else:
        crisis_status = "No crisis detected"

    sections = [
        ("User Message", state["user_message"]),
        ("User Emotional State", json.dumps(state.get("user_emotion"), indent=2)),
        ("Emotion Clarity", f"{clarity:.2f} ({level})\n{CLARITY_GUIDANCE[level]}"),
        ("Mollei's Emotional Response", json.dumps(state.get("mollei_emotion"), indent=2)),
        ("Context", state.get("context_summary") or "No prior context"),
        (
            "Conversation Phase",
            f"Turn {state['turn_number']} ({conversation_phase(state['turn_number'])})",
        ),
        ("Approach", state.get("approach") or ApproachType.VALIDATE.value),
        (
            "Response Modifier",
            state.get("suggested_response_modifier") or ResponseModifier.NONE.value,
        ),
        ("Crisis Status", crisis_status),
    ]
    body = "\n\n".join(f"## {title}\n{content}" for title, content in sections)
    return (
        f"{body}\n\n"
        "Generate a response that:\n"
        "1. Acknowledges the user's emotion before content\n"
        "2. Keeps Mollei's warm, thoughtful personality\n"
        "3. Matches the confidence of your language to the emotion clarity\n"
        "4. References context naturally (if available)\n"
        "5. Does NOT rush to solutions unless asked"
    )


class ResponseGenerator(ResilientAgent):
    """Sequential-group agent writing ``response`` and ``model_used``."""

    def __init__(
        self, llm: LLMClient, circuit_breaker: CircuitBreakerProtocol | None = None
    ) -> None:
        self.config = AgentConfig(
            agent_id=AgentId.RESPONSE_GENERATOR,
            timeout_ms=settings.response_generator_timeout_ms,
            model=settings.response_model,
        )
        self.llm = llm
        super().__init__(circuit_breaker)

    def fallback(self, state: ConversationState) -> PartialResult:
        return {"response": FALLBACK_RESPONSE}

    def select_model(self, state: ConversationState) -> str:
        if state.get("crisis_severity", 0) >= CrisisSeverity.CRISIS_SUPPORT:
            return settings.crisis_model
        return settings.response_model

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        model = self.select_model(state)
        messages = [
            {"role": "system", "content": RESPONSE_GENERATOR_PROMPT},
            {"role": "user", "content": build_response_prompt(state)},
        ]

        severity = state.get("crisis_severity")

        if ctx.stream is None or ctx.stream.aborted:
            text = await self.llm.generate_text(
                messages, model=model, agent_id=self.agent_id, trace_id=ctx.trace_id
            )
            return {"response": apply_severity_modifier(text, severity), "model_used": model}

        chunks: list[str] = []
        async with aclosing(
            self.llm.stream_text(
                messages, model=model, agent_id=self.agent_id, trace_id=ctx.trace_id
            )
        ) as stream:
            async for chunk in stream:
                chunks.append(chunk)
                if ctx.stream.aborted:
                    break
                await ctx.stream.send_event(StreamEventType.DELTA.value, {"content": chunk})

        text = "".join(chunks)
        response = apply_severity_modifier(text, severity)
        footer = response[len(text):]
        if footer and not ctx.stream.aborted:
            await ctx.stream.send_event(StreamEventType.DELTA.value, {"content": footer})
        return {"response": response, "model_used": model}
