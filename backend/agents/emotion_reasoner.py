"""Emotion Reasoner: decides how Mollei shows up emotionally.

Runs after the parallel group, so its context includes the user's emotion,
the memory summary and the crisis assessment.
"""

import json

from pydantic import BaseModel, ConfigDict, Field

from agents.base import AgentConfig, ResilientAgent
from agents.prompts import EMOTION_REASONER_PROMPT
from agents.utils import LLMClient
from config import settings
from constants import AgentId, ApproachType
from pipeline.state import ConversationState, EmotionState, PartialResult, PipelineContext
from resilience import CircuitBreakerProtocol

# Mollei's own emotional stance is always mildly positive.
MOLLEI_VALENCE = 0.3


class EmotionReasonerOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    primary: str
    energy: float = Field(ge=0.0, le=1.0)
    approach: ApproachType
    tone_modifiers: list[str] = Field(default_factory=list, alias="toneModifiers")
    presence_quality: str = Field(alias="presenceQuality")


def build_reasoner_context(state: ConversationState) -> str:
    """Render the cumulative state into the reasoner's user message."""
    return "\n".join(
        [
            f"User message: {state['user_message']}",
            f"User emotion: {json.dumps(state.get('user_emotion'))}",
            f"Context summary: {state.get('context_summary') or 'None'}",
            f"Emotional trajectory: {state.get('emotional_trajectory') or 'unknown'}",
            f"Crisis detected: {str(state.get('crisis_detected', False)).lower()}",
            f"Crisis severity: {state.get('crisis_severity', 1)}",
            f"Turn number: {state['turn_number']}",
        ]
    )


class EmotionReasoner(ResilientAgent):
    """Sequential-group agent writing ``mollei_emotion``, ``approach`` and ``presence_quality``."""

    def __init__(
        self, llm: LLMClient, circuit_breaker: CircuitBreakerProtocol | None = None
    ) -> None:
        self.config = AgentConfig(
            agent_id=AgentId.EMOTION_REASONER,
            timeout_ms=settings.emotion_reasoner_timeout_ms,
            model=settings.fast_model,
        )
        self.llm = llm
        super().__init__(circuit_breaker)

    def fallback(self, state: ConversationState) -> PartialResult:
        return {
            "mollei_emotion": EmotionState(
                primary="warmth", intensity=0.6, valence=MOLLEI_VALENCE
            ).model_dump(),
            "approach": ApproachType.VALIDATE.value,
            "presence_quality": "attentive",
        }

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        output = await self.llm.generate_object(
            [
                {"role": "system", "content": EMOTION_REASONER_PROMPT},
                {"role": "user", "content": build_reasoner_context(state)},
            ],
            EmotionReasonerOutput,
            model=self.config.model,
            agent_id=self.agent_id,
            trace_id=ctx.trace_id,
        )

        span = ctx.tracer.current_span() if ctx.tracer else None
        if span:
            span.add_event(
                "emotion_reasoned",
                {"primary": output.primary, "approach": output.approach.value},
            )

        mollei_emotion = EmotionState(
            primary=output.primary,
            intensity=output.energy,
            valence=MOLLEI_VALENCE,
            signals=output.tone_modifiers,
        )
        return {
            "mollei_emotion": mollei_emotion.model_dump(),
            "approach": output.approach.value,
            "presence_quality": output.presence_quality,
        }
