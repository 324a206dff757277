"""Pipeline orchestrator for one chat turn.

The pipeline shape is fixed: a parallel group (Mood Sensor, Memory Agent,
Safety Monitor) runs concurrently against the initial state, its partial
results are merged, then a sequential group (Emotion Reasoner, Response
Generator) runs in order over the cumulative state.

The flow is a LangGraph StateGraph:

    START -> sense -> emotion_reasoner -> response_generator -> END

``sense`` runs the whole parallel group; each sequential agent is its own
node. After every node a router ends the graph early if the stream was
aborted. ``latency_ms`` and ``agent_errors`` carry reducers on the state
schema, so node updates are folded in without losing any agent's entry.

Usage:
    >>> orchestrator = create_pipeline(parallel=[...], sequential=[...])
    >>> final_state = await orchestrator.run(initial_state, ctx)
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol

import structlog
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from constants import PIPELINE_PHASE_MESSAGES, PipelinePhase
from pipeline.state import ConversationState, PartialResult, PipelineContext
from tracing import trace_pipeline_end, trace_pipeline_start

logger = structlog.get_logger(__name__)

SENSE_NODE = "sense"

StageNode = Callable[[ConversationState, RunnableConfig], Awaitable[PartialResult]]


class PipelineAgent(Protocol):
    """What the orchestrator schedules: an id and a never-raising execute."""

    @property
    def agent_id(self) -> str: ...

    async def execute(self, state: ConversationState, ctx: PipelineContext) -> PartialResult: ...


def merge_results(base: PartialResult, results: Sequence[PartialResult]) -> PartialResult:
    """Fold partial results onto a base in list order.

    Every field is last-write-wins except ``latency_ms`` (dict union) and
    ``agent_errors`` (concatenation), so the fold is associative for those
    two fields. Neither ``base`` nor any result is mutated.

    Args:
        base: Starting state or partial
        results: Partial results to overlay, in order

    Returns:
        A new merged dict
    """
    merged: PartialResult = dict(base)
    latency_ms: dict[str, int] = dict(base.get("latency_ms") or {})
    agent_errors: list[str] = list(base.get("agent_errors") or [])

    for result in results:
        for key, value in result.items():
            if key == "latency_ms":
                latency_ms.update(value)
            elif key == "agent_errors":
                agent_errors.extend(value)
            else:
                merged[key] = value

    merged["latency_ms"] = latency_ms
    merged["agent_errors"] = agent_errors
    return merged


async def run_parallel_modules(
    agents: Sequence[PipelineAgent],
    state: ConversationState,
    ctx: PipelineContext,
) -> list[PartialResult]:
    """Run agents concurrently against the same state with settle-all semantics.

    A call that raises despite the execute contract contributes an empty
    partial result and is logged; it never aborts the batch.

    Returns:
        One partial result per agent, in ``agents`` order
    """
    outcomes = await asyncio.gather(
        *(agent.execute(state, ctx) for agent in agents),
        return_exceptions=True,
    )

    results: list[PartialResult] = []
    for agent, outcome in zip(agents, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.error(
                "parallel_module_rejected",
                agent_id=agent.agent_id,
                trace_id=ctx.trace_id,
                error=str(outcome),
                error_type=type(outcome).__name__,
            )
            results.append({})
        else:
            results.append(outcome)
    return results


def _pipeline_context(config: RunnableConfig) -> PipelineContext:
    return config["configurable"]["pipeline_context"]


class PipelineOrchestrator:
    """Runs the fixed parallel-then-sequential pipeline for one request.

    Agent instances are per request; their circuit breakers are shared
    through the registry.

    Attributes:
        parallel: Agents run concurrently in the sensing phase
        sequential: Agents run in order in the reasoning phase
    """

    def __init__(
        self,
        parallel: Sequence[PipelineAgent],
        sequential: Sequence[PipelineAgent],
    ) -> None:
        self.parallel = list(parallel)
        self.sequential = list(sequential)
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> CompiledStateGraph:
        """Build and compile the LangGraph StateGraph.

        Returns:
            Compiled StateGraph ready for execution
        """
        graph = StateGraph(ConversationState)

        graph.add_node(SENSE_NODE, self._sense)
        node_names = [SENSE_NODE]
        for agent in self.sequential:
            graph.add_node(agent.agent_id, self._make_stage_node(agent))
            node_names.append(agent.agent_id)

        graph.add_edge(START, SENSE_NODE)

        # Each node either hands off to the next one or ends on abort
        for current, following in zip(node_names, [*node_names[1:], END], strict=True):
            graph.add_conditional_edges(
                current,
                self._should_continue,
                {"continue": following, "end": END},
            )

        return graph.compile()

    async def _sense(self, state: ConversationState, config: RunnableConfig) -> PartialResult:
        """Run the parallel group and return the merged update."""
        ctx = _pipeline_context(config)
        results = await run_parallel_modules(self.parallel, state, ctx)
        update = merge_results({}, results)
        update["phase"] = PipelinePhase.REASONING.value

        if ctx.stream_aborted:
            logger.info("pipeline_aborted_after_sensing", trace_id=ctx.trace_id)
            update["stream_aborted"] = True
        elif ctx.stream is not None:
            await ctx.stream.send_progress(
                PipelinePhase.REASONING.value,
                PIPELINE_PHASE_MESSAGES[PipelinePhase.REASONING],
            )
        return update

    def _make_stage_node(self, agent: PipelineAgent) -> StageNode:
        async def stage_node(state: ConversationState, config: RunnableConfig) -> PartialResult:
            ctx = _pipeline_context(config)
            if ctx.stream_aborted:
                logger.info(
                    "pipeline_aborted_before_stage",
                    trace_id=ctx.trace_id,
                    agent_id=agent.agent_id,
                )
                return {"stream_aborted": True}
            return await agent.execute(state, ctx)

        return stage_node

    def _should_continue(self, state: ConversationState) -> str:
        return "end" if state.get("stream_aborted") else "continue"

    async def run(
        self, initial_state: ConversationState, ctx: PipelineContext
    ) -> ConversationState:
        """Run the pipeline to completion.

        Args:
            initial_state: State created by ``create_initial_state``
            ctx: Per-request context (stream and tracer are optional)

        Returns:
            The final state, phase "complete", with ``latency_ms["total"]``
        """
        start = time.perf_counter()
        trace_pipeline_start(
            ctx.trace_id,
            session_id=ctx.session_id,
            user_id=ctx.user_id,
            turn_number=ctx.turn_number,
        )
        logger.info(
            "pipeline_started",
            trace_id=ctx.trace_id,
            session_id=ctx.session_id,
            turn_number=ctx.turn_number,
        )

        if ctx.stream is not None:
            await ctx.stream.send_progress(
                PipelinePhase.SENSING.value,
                PIPELINE_PHASE_MESSAGES[PipelinePhase.SENSING],
            )

        sensing_state = ConversationState(
            **{**initial_state, "phase": PipelinePhase.SENSING.value}
        )
        final_state = await self._compiled_graph.ainvoke(
            sensing_state,
            config={"configurable": {"pipeline_context": ctx}},
        )

        total_ms = round((time.perf_counter() - start) * 1000)
        agent_errors = final_state.get("agent_errors", [])
        trace_pipeline_end(
            ctx.trace_id,
            duration_ms=total_ms,
            success=not agent_errors,
            crisis_detected=final_state.get("crisis_detected"),
        )
        logger.info(
            "pipeline_complete",
            trace_id=ctx.trace_id,
            duration_ms=total_ms,
            agent_errors=len(agent_errors),
            aborted=bool(final_state.get("stream_aborted")),
        )

        return ConversationState(
            **{
                **final_state,
                "phase": PipelinePhase.COMPLETE.value,
                "latency_ms": {**final_state.get("latency_ms", {}), "total": total_ms},
            }
        )


def create_pipeline(
    parallel: Sequence[PipelineAgent],
    sequential: Sequence[PipelineAgent],
) -> PipelineOrchestrator:
    """Factory function to create a PipelineOrchestrator."""
    return PipelineOrchestrator(parallel, sequential)
