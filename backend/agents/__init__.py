"""Pipeline agents, prompts, and LLM integration.

This module exports the key components needed for agent execution:
- The shared execution contract (timeout, circuit breaker, fallback)
- The five concrete agents, in pipeline order
- The regex safety pre-filter and crisis resource footers
- LLM client utilities with latency, token and cost tracking
"""

from agents.base import AgentConfig, AgentStage, ResilientAgent, execute_stage
from agents.crisis_resources import (
    CRISIS_RESOURCES,
    SAFETY_CHECK_FOOTER,
    SUGGEST_HUMAN_FOOTER,
    apply_severity_modifier,
)
from agents.emotion_reasoner import EmotionReasoner
from agents.memory_agent import MemoryAgent
from agents.mood_sensor import MoodSensor
from agents.response_generator import ResponseGenerator, build_response_prompt
from agents.safety_heuristics import HeuristicResult, run_safety_heuristics
from agents.safety_monitor import SafetyMonitor
from agents.utils import LLMClient, StructuredOutputError, extract_json_from_response

__all__ = [
    # Execution contract
    "AgentConfig",
    "AgentStage",
    "ResilientAgent",
    "execute_stage",
    # Agents
    "MoodSensor",
    "MemoryAgent",
    "SafetyMonitor",
    "EmotionReasoner",
    "ResponseGenerator",
    "build_response_prompt",
    # Safety
    "HeuristicResult",
    "run_safety_heuristics",
    "CRISIS_RESOURCES",
    "SAFETY_CHECK_FOOTER",
    "SUGGEST_HUMAN_FOOTER",
    "apply_severity_modifier",
    # Utils
    "LLMClient",
    "StructuredOutputError",
    "extract_json_from_response",
]
