"""Conversation state and orchestration for one chat turn.

Key Components:
    - ConversationState: TypedDict threaded through every agent
    - PipelineContext: Immutable per-request bundle (ids, stream, tracer)
    - merge_results: Deterministic fold of partial results
    - PipelineOrchestrator: Parallel group, merge, then sequential group
"""

from pipeline.orchestrator import (
    PipelineAgent,
    PipelineOrchestrator,
    create_pipeline,
    merge_results,
    run_parallel_modules,
)
from pipeline.state import (
    ConversationState,
    EmotionState,
    PartialResult,
    PipelineContext,
    create_initial_state,
    merge_latency,
)

__all__ = [
    # State
    "ConversationState",
    "EmotionState",
    "PartialResult",
    "PipelineContext",
    "create_initial_state",
    "merge_latency",
    # Orchestration
    "PipelineAgent",
    "PipelineOrchestrator",
    "create_pipeline",
    "merge_results",
    "run_parallel_modules",
]
