"""Shared vocabularies and fixed values for the Mollei pipeline.

Every enum here is a ``StrEnum`` (or ``IntEnum`` for severities) so values
serialize directly into JSON payloads, prompts, and pydantic models.
"""

from enum import IntEnum, StrEnum


class AgentId(StrEnum):
    """Identifiers for the five pipeline agents."""

    MOOD_SENSOR = "mood_sensor"
    MEMORY_AGENT = "memory_agent"
    SAFETY_MONITOR = "safety_monitor"
    EMOTION_REASONER = "emotion_reasoner"
    RESPONSE_GENERATOR = "response_generator"


class CrisisSeverity(IntEnum):
    """Ordinal 1-5 risk scale driving response modification."""

    PROCEED = 1
    PROCEED_WITH_CARE = 2
    SUGGEST_HUMAN = 3
    CRISIS_SUPPORT = 4
    IMMEDIATE_DANGER = 5


class SignalType(StrEnum):
    """Crisis signal categories, in heuristic evaluation order."""

    SUICIDAL_IDEATION = "suicidal_ideation"
    SELF_HARM = "self_harm"
    ABUSE = "abuse"
    SAFETY = "safety"
    DISTRESS = "distress"
    NONE = "none"


class ResponseModifier(StrEnum):
    """How the Safety Monitor suggests the reply be shaped."""

    NONE = "none"
    INCLUDE_SAFETY_CHECK = "include_safety_check"
    WARM_VALIDATION_FIRST = "warm_validation_first"
    GENTLE_RESOURCES = "gentle_resources"
    SUGGEST_PROFESSIONAL = "suggest_professional"
    CRISIS_RESOURCES = "crisis_resources"


class PipelinePhase(StrEnum):
    """Pipeline lifecycle phases reported to the client."""

    IDLE = "idle"
    SENSING = "sensing"
    REASONING = "reasoning"
    COMPLETE = "complete"
    ERROR = "error"


PIPELINE_PHASE_MESSAGES: dict[PipelinePhase, str] = {
    PipelinePhase.IDLE: "",
    PipelinePhase.SENSING: "Understanding how you feel...",
    PipelinePhase.REASONING: "Thinking about how to respond...",
    PipelinePhase.COMPLETE: "",
    PipelinePhase.ERROR: "Something went wrong",
}


class ApproachType(StrEnum):
    """Response strategy chosen by the Emotion Reasoner."""

    VALIDATE = "validate"
    SUPPORT = "support"
    EXPLORE = "explore"
    CRISIS_SUPPORT = "crisis_support"


class RelationshipStage(StrEnum):
    """How far along the relationship with the user is."""

    NEW = "new"
    BUILDING = "building"
    ESTABLISHED = "established"


class EmotionalTrajectory(StrEnum):
    """Direction of the user's emotional state across turns."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


FALLBACK_EMOTION: dict[str, object] = {
    "primary": "neutral",
    "secondary": None,
    "intensity": 0.5,
    "valence": 0.0,
    "signals": [],
    "ambiguity_notes": None,
}

FALLBACK_RESPONSE = (
    "I'm here with you. Something went wrong on my end, "
    "but please know I'm listening."
)

GENERIC_ERROR_MESSAGE = (
    "I'm sorry, something went wrong while I was thinking about your message. "
    "Please try again in a moment."
)

# USD per million tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "anthropic/claude-opus-4-5": (5.0, 25.0),
    "anthropic/claude-sonnet-4-5": (3.0, 15.0),
    "anthropic/claude-haiku-4-5": (1.0, 5.0),
}


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimate the USD cost of a model call.

    Unknown models are priced at zero rather than guessed.

    Args:
        model: LiteLLM model identifier.
        input_tokens: Prompt tokens consumed.
        output_tokens: Completion tokens produced.

    Returns:
        Estimated cost in USD.
    """
    input_price, output_price = MODEL_PRICING.get(model, (0.0, 0.0))
    return (input_tokens * input_price + output_tokens * output_price) / 1_000_000
