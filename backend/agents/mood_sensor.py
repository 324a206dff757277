"""Mood Sensor: detects the user's emotional state."""

from pydantic import BaseModel, ConfigDict, Field

from agents.base import AgentConfig, ResilientAgent
from agents.prompts import MOOD_SENSOR_PROMPT
from agents.utils import LLMClient
from config import settings
from constants import FALLBACK_EMOTION, AgentId
from pipeline.state import ConversationState, EmotionState, PartialResult, PipelineContext
from resilience import CircuitBreakerProtocol


class MoodSensorOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    primary: str
    secondary: str | None = None
    intensity: float = Field(ge=0.0, le=1.0)
    valence: float = Field(ge=-1.0, le=1.0)
    signals: list[str] = Field(default_factory=list)
    ambiguity_notes: str | None = Field(default=None, alias="ambiguityNotes")


class MoodSensor(ResilientAgent):
    """Parallel-group agent writing ``user_emotion``."""

    def __init__(
        self, llm: LLMClient, circuit_breaker: CircuitBreakerProtocol | None = None
    ) -> None:
        self.config = AgentConfig(
            agent_id=AgentId.MOOD_SENSOR,
            timeout_ms=settings.mood_sensor_timeout_ms,
            model=settings.fast_model,
        )
        self.llm = llm
        super().__init__(circuit_breaker)

    def fallback(self, state: ConversationState) -> PartialResult:
        return {"user_emotion": dict(FALLBACK_EMOTION)}

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        output = await self.llm.generate_object(
            [
                {"role": "system", "content": MOOD_SENSOR_PROMPT},
                {"role": "user", "content": state["user_message"]},
            ],
            MoodSensorOutput,
            model=self.config.model,
            agent_id=self.agent_id,
            trace_id=ctx.trace_id,
        )
        emotion = EmotionState(**output.model_dump())
        return {"user_emotion": emotion.model_dump()}
