"""Memory Agent: summarizes prior turns for conversational continuity.

Reads recent turns from the conversation cache (never the database, and
never writes) and asks the model for a context summary, callbacks, themes
and the emotional trajectory.
"""

import structlog
from pydantic import BaseModel, ConfigDict, Field

from agents.base import AgentConfig, ResilientAgent
from agents.prompts import MEMORY_AGENT_PROMPT
from agents.utils import LLMClient
from cache import ConversationCache, get_conversation_cache
from config import settings
from constants import AgentId, EmotionalTrajectory, RelationshipStage
from pipeline.state import ConversationState, PartialResult, PipelineContext
from resilience import CircuitBreakerProtocol

logger = structlog.get_logger(__name__)


class MemoryAgentOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    context_summary: str = Field(alias="contextSummary")
    callback_opportunities: list[str] = Field(default_factory=list, alias="callbackOpportunities")
    relationship_stage: RelationshipStage = Field(alias="relationshipStage")
    recurring_themes: list[str] = Field(default_factory=list, alias="recurringThemes")
    emotional_trajectory: EmotionalTrajectory = Field(alias="emotionalTrajectory")


class MemoryAgent(ResilientAgent):
    """Parallel-group agent writing context and trajectory fields.

    Attributes:
        llm: Model client
        cache: Conversation history collaborator
        max_turns: Recent turns included in the model context
    """

    def __init__(
        self,
        llm: LLMClient,
        cache: ConversationCache | None = None,
        circuit_breaker: CircuitBreakerProtocol | None = None,
        max_turns: int | None = None,
    ) -> None:
        self.config = AgentConfig(
            agent_id=AgentId.MEMORY_AGENT,
            timeout_ms=settings.memory_agent_timeout_ms,
            model=settings.fast_model,
        )
        self.llm = llm
        self.cache = cache or get_conversation_cache()
        self.max_turns = max_turns or settings.memory_context_turns
        super().__init__(circuit_breaker)

    def fallback(self, state: ConversationState) -> PartialResult:
        return {
            "context_summary": "",
            "callback_opportunities": [],
            "recurring_themes": [],
            "emotional_trajectory": EmotionalTrajectory.STABLE.value,
        }

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        session_context = await self.cache.get_session_context(
            state["session_id"], self.max_turns
        )

        output = await self.llm.generate_object(
            [
                {"role": "system", "content": MEMORY_AGENT_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Session context: {session_context}\n\n"
                        f"Current message: {state['user_message']}"
                    ),
                },
            ],
            MemoryAgentOutput,
            model=self.config.model,
            agent_id=self.agent_id,
            trace_id=ctx.trace_id,
        )

        logger.debug(
            "memory_retrieved",
            trace_id=ctx.trace_id,
            themes=len(output.recurring_themes),
            trajectory=output.emotional_trajectory.value,
        )
        return {
            "context_summary": output.context_summary,
            "callback_opportunities": output.callback_opportunities,
            "recurring_themes": output.recurring_themes,
            "emotional_trajectory": output.emotional_trajectory.value,
        }
