"""Safety Monitor: crisis detection for every turn.

Per turn:
1. Run the regex pre-filter. Clear messages return "proceed" without a
   model call.
2. Flagged messages escalate to a structured-output model call whose result
   sets the crisis fields.

If the model call fails or times out the wrapper returns the fail-safe
fallback: a moderate crisis (severity 3, "distress") rather than "no crisis".
"""

import structlog
from pydantic import BaseModel, ConfigDict, Field

from agents.base import AgentConfig, ResilientAgent
from agents.prompts import SAFETY_MONITOR_PROMPT
from agents.safety_heuristics import run_safety_heuristics
from agents.utils import LLMClient
from config import settings
from constants import AgentId, CrisisSeverity, ResponseModifier, SignalType
from pipeline.state import ConversationState, PartialResult, PipelineContext
from resilience import CircuitBreakerProtocol
from tracing import trace_crisis

logger = structlog.get_logger(__name__)

HEURISTIC_CLEAR_CONFIDENCE = 0.95
FAILSAFE_CONFIDENCE = 0.5


class SafetyMonitorOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    crisis_detected: bool = Field(alias="crisisDetected")
    severity: int = Field(ge=1, le=5)
    signal_type: SignalType = Field(alias="signalType")
    confidence: float = Field(ge=0.0, le=1.0)
    key_phrases: list[str] = Field(default_factory=list, alias="keyPhrases")
    suggested_response_modifier: ResponseModifier = Field(alias="suggestedResponseModifier")


class SafetyMonitor(ResilientAgent):
    """Parallel-group agent writing the crisis fields."""

    def __init__(
        self, llm: LLMClient, circuit_breaker: CircuitBreakerProtocol | None = None
    ) -> None:
        self.config = AgentConfig(
            agent_id=AgentId.SAFETY_MONITOR,
            timeout_ms=settings.safety_monitor_timeout_ms,
            model=settings.fast_model,
        )
        self.llm = llm
        super().__init__(circuit_breaker)

    def fallback(self, state: ConversationState) -> PartialResult:
        return {
            "crisis_detected": True,
            "crisis_severity": int(CrisisSeverity.SUGGEST_HUMAN),
            "crisis_signal_type": SignalType.DISTRESS.value,
            "crisis_confidence": FAILSAFE_CONFIDENCE,
            "suggested_response_modifier": ResponseModifier.SUGGEST_PROFESSIONAL.value,
        }

    async def run(self, state: ConversationState, ctx: PipelineContext) -> PartialResult:
        heuristics = run_safety_heuristics(state["user_message"])
        span = ctx.tracer.current_span() if ctx.tracer else None

        if not heuristics.should_escalate:
            if span:
                span.add_event("safety_clear", {"method": "heuristics"})
            return {
                "crisis_detected": False,
                "crisis_severity": int(CrisisSeverity.PROCEED),
                "crisis_signal_type": SignalType.NONE.value,
                "crisis_confidence": HEURISTIC_CLEAR_CONFIDENCE,
                "suggested_response_modifier": ResponseModifier.NONE.value,
            }

        logger.info(
            "safety_heuristics_flagged",
            trace_id=ctx.trace_id,
            signals=[s.value for s in heuristics.signals],
        )

        output = await self.llm.generate_object(
            [
                {"role": "system", "content": SAFETY_MONITOR_PROMPT},
                {"role": "user", "content": state["user_message"]},
            ],
            SafetyMonitorOutput,
            model=self.config.model,
            agent_id=self.agent_id,
            trace_id=ctx.trace_id,
            temperature=0.0,
        )

        if output.crisis_detected:
            logger.warning(
                "crisis_confirmed",
                trace_id=ctx.trace_id,
                severity=output.severity,
                signal_type=output.signal_type.value,
            )
            trace_crisis(
                ctx.trace_id,
                severity=output.severity,
                signal_type=output.signal_type.value,
                confidence=output.confidence,
                session_id=ctx.session_id,
            )
            if span:
                span.add_event(
                    "crisis_detected",
                    {"severity": output.severity, "signal_type": output.signal_type.value},
                )
        else:
            logger.info("crisis_overridden", trace_id=ctx.trace_id)
            if span:
                span.add_event("safety_override", {"method": "llm"})

        return {
            "crisis_detected": output.crisis_detected,
            "crisis_severity": output.severity,
            "crisis_signal_type": output.signal_type.value,
            "crisis_confidence": output.confidence,
            "suggested_response_modifier": output.suggested_response_modifier.value,
        }
