"""LLM client utilities and helper functions for agent execution.

This module provides:
- LLMClient: Wrapper around LiteLLM exposing the three call shapes the
  pipeline needs (structured object, whole text, streamed text), with
  latency, token and cost tracking on every call
- StructuredOutputError: Raised when a response does not hold a valid object
- extract_json_from_response: Tolerant JSON extraction from model output
"""

import json
import re
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from litellm import ModelResponse, acompletion
from pydantic import BaseModel, ValidationError

from config import settings
from constants import estimate_cost
from tracing import trace_llm_call

logger = structlog.get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class StructuredOutputError(Exception):
    """The model response did not contain an object matching the schema.

    Attributes:
        schema_name: Name of the expected pydantic schema
        raw_content: Response text that failed to parse, for debugging
    """

    def __init__(self, schema_name: str, message: str, raw_content: str = "") -> None:
        super().__init__(f"{schema_name}: {message}")
        self.schema_name = schema_name
        self.raw_content = raw_content


@dataclass
class LLMCallMetrics:
    """Token usage and latency for one model call.

    Attributes:
        model: Model identifier used for the call
        input_tokens: Prompt tokens (estimated when the provider omits usage)
        output_tokens: Completion tokens
        latency_ms: Wall-clock duration of the call
        estimated_cost: USD cost from the pricing table
    """

    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int
    estimated_cost: float


class LLMClient:
    """Wrapper around LiteLLM used by every agent.

    The client never retries: each agent runs under a tight deadline and a
    circuit breaker, so a failed call is surfaced immediately and the agent
    falls back.

    Attributes:
        default_model: Model to use if not specified in calls
        request_timeout: Provider-level request timeout in seconds
    """

    def __init__(
        self,
        default_model: str | None = None,
        request_timeout: float | None = None,
    ) -> None:
        """Initialize the LLM client.

        Args:
            default_model: Model to use if not specified (defaults to config fast_model)
            request_timeout: Seconds before LiteLLM gives up on a request
                (defaults to the total pipeline budget)
        """
        self.default_model = default_model or settings.fast_model
        self.request_timeout = (
            request_timeout
            if request_timeout is not None
            else settings.pipeline_total_timeout_ms / 1000
        )

    async def generate_object(
        self,
        messages: list[dict[str, Any]],
        schema: type[SchemaT],
        *,
        model: str | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> SchemaT:
        """Run a JSON-mode completion and validate it against a schema.

        Args:
            messages: List of message dicts with 'role' and 'content'
            schema: Pydantic model the response must satisfy
            model: Model to use (defaults to self.default_model)
            agent_id: Calling agent, for logs and trace events
            trace_id: Per-turn trace id
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response

        Returns:
            A validated instance of ``schema``

        Raises:
            StructuredOutputError: If the response holds no valid object
            litellm.exceptions.*: Provider errors propagate unchanged
        """
        model = model or self.default_model
        start_time = time.perf_counter()
        try:
            response = await self._make_request(
                messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content or ""
            metrics = self._metrics_from_response(response, model, messages, content, start_time)
            result = parse_structured_output(content, schema)
        except Exception as e:
            self._record_failure(model, agent_id, trace_id, start_time, e)
            raise

        self._record_success(metrics, agent_id, trace_id)
        return result

    async def generate_text(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """Run one non-streaming completion and return its full text."""
        model = model or self.default_model
        start_time = time.perf_counter()
        try:
            response = await self._make_request(
                messages, model=model, temperature=temperature, max_tokens=max_tokens
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            self._record_failure(model, agent_id, trace_id, start_time, e)
            raise

        metrics = self._metrics_from_response(response, model, messages, content, start_time)
        self._record_success(metrics, agent_id, trace_id)
        return content

    async def stream_text(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        agent_id: str | None = None,
        trace_id: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> AsyncIterator[str]:
        """Stream a completion, yielding text deltas as they arrive.

        Usage is read from the final chunk when the provider reports it and
        estimated from text length otherwise. If the consumer stops early the
        call is still recorded with the text received so far.
        """
        model = model or self.default_model
        start_time = time.perf_counter()
        collected: list[str] = []
        input_tokens: int | None = None
        output_tokens: int | None = None
        failed = False

        try:
            stream = await self._make_request(
                messages,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in stream:
                usage = getattr(chunk, "usage", None)
                if usage:
                    input_tokens = usage.prompt_tokens
                    output_tokens = usage.completion_tokens
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    collected.append(delta)
                    yield delta
        except Exception as e:
            failed = True
            self._record_failure(model, agent_id, trace_id, start_time, e)
            raise
        finally:
            if not failed:
                text = "".join(collected)
                if input_tokens is None:
                    input_tokens = count_messages_tokens(messages)
                if output_tokens is None:
                    output_tokens = count_tokens_estimate(text)
                metrics = LLMCallMetrics(
                    model=model,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    latency_ms=int((time.perf_counter() - start_time) * 1000),
                    estimated_cost=estimate_cost(model, input_tokens, output_tokens),
                )
                self._record_success(metrics, agent_id, trace_id)

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float,
        max_tokens: int | None,
        **extra: Any,
    ) -> Any:
        """Make the actual LiteLLM request.

        Args:
            messages: Message history
            model: Model identifier
            temperature: Sampling temperature
            max_tokens: Max response tokens
            **extra: Additional LiteLLM arguments (stream, response_format, ...)

        Returns:
            Raw ModelResponse, or a stream wrapper when ``stream=True``
        """
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "timeout": self.request_timeout,
            **extra,
        }
        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        return await acompletion(**kwargs)

    def _metrics_from_response(
        self,
        response: ModelResponse,
        model: str,
        messages: list[dict[str, Any]],
        content: str,
        start_time: float,
    ) -> LLMCallMetrics:
        usage = getattr(response, "usage", None)
        input_tokens = usage.prompt_tokens if usage else count_messages_tokens(messages)
        output_tokens = usage.completion_tokens if usage else count_tokens_estimate(content)
        return LLMCallMetrics(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=int((time.perf_counter() - start_time) * 1000),
            estimated_cost=estimate_cost(model, input_tokens, output_tokens),
        )

    def _record_success(
        self, metrics: LLMCallMetrics, agent_id: str | None, trace_id: str | None
    ) -> None:
        logger.info(
            "llm_call_complete",
            model=metrics.model,
            agent_id=agent_id,
            trace_id=trace_id,
            input_tokens=metrics.input_tokens,
            output_tokens=metrics.output_tokens,
            latency_ms=metrics.latency_ms,
            estimated_cost=metrics.estimated_cost,
        )
        if trace_id:
            trace_llm_call(
                trace_id,
                agent_id=agent_id or "unknown",
                model=metrics.model,
                duration_ms=metrics.latency_ms,
                input_tokens=metrics.input_tokens,
                output_tokens=metrics.output_tokens,
                estimated_cost=metrics.estimated_cost,
                success=True,
            )

    def _record_failure(
        self,
        model: str,
        agent_id: str | None,
        trace_id: str | None,
        start_time: float,
        error: Exception,
    ) -> None:
        latency_ms = int((time.perf_counter() - start_time) * 1000)
        logger.warning(
            "llm_call_failed",
            model=model,
            agent_id=agent_id,
            trace_id=trace_id,
            latency_ms=latency_ms,
            error_type=type(error).__name__,
            error=str(error),
        )
        if trace_id:
            trace_llm_call(
                trace_id,
                agent_id=agent_id or "unknown",
                model=model,
                duration_ms=latency_ms,
                input_tokens=0,
                output_tokens=0,
                estimated_cost=0.0,
                success=False,
            )


def parse_structured_output(content: str, schema: type[SchemaT]) -> SchemaT:
    """Extract a JSON object from model output and validate it.

    Args:
        content: Raw response text
        schema: Pydantic model to validate against

    Returns:
        A validated schema instance

    Raises:
        StructuredOutputError: If no object is found or validation fails
    """
    data = extract_json_from_response(content)
    if data is None:
        raise StructuredOutputError(schema.__name__, "no JSON object in response", content)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        raise StructuredOutputError(
            schema.__name__, f"{e.error_count()} validation error(s)", content
        ) from e


def _extract_balanced_json_objects(text: str) -> list[str]:
    """Extract balanced JSON object candidates from arbitrary text."""
    candidates: list[str] = []
    n = len(text)

    for start in range(n):
        if text[start] != "{":
            continue

        depth = 0
        in_string = False
        escaped = False

        for end in range(start, n):
            ch = text[end]

            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue

            if ch == '"':
                in_string = True
                continue

            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    candidates.append(text[start : end + 1])
                    break

    return candidates


def extract_json_from_response(response: str) -> dict[str, Any] | None:
    """Extract JSON from an LLM response that may contain extra text.

    Tries, in order: the whole response, fenced code blocks, then the first
    balanced ``{...}`` object that parses.

    Args:
        response: The full LLM response text

    Returns:
        Parsed JSON dict if found, None otherwise
    """
    def try_parse(candidate: str) -> dict[str, Any] | None:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None

    parsed = try_parse(response.strip())
    if parsed is not None:
        return parsed

    fence_pattern = r"```(?:json)?\s*([\s\S]*?)\s*```"
    for match in re.finditer(fence_pattern, response, re.IGNORECASE):
        fenced_body = match.group(1).strip()
        parsed = try_parse(fenced_body)
        if parsed is not None:
            return parsed

    for candidate in _extract_balanced_json_objects(response):
        parsed = try_parse(candidate)
        if parsed is not None:
            return parsed

    return None


def count_tokens_estimate(text: str) -> int:
    """Estimate token count using the ~4 characters per token rule of thumb."""
    return len(text) // 4


def count_messages_tokens(messages: list[dict[str, Any]]) -> int:
    """Estimate prompt tokens for a message list."""
    return sum(count_tokens_estimate(str(m.get("content", ""))) for m in messages)
