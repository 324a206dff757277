"""Pydantic schemas for API request/response models.

This module defines all the data models used by the HTTP API.
All models use Pydantic v2 with strict type validation.
"""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Request body for one chat turn (JSON and streaming endpoints)."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: UUID | None = Field(
        default=None,
        alias="sessionId",
        description="Existing session to continue; a new one is created if omitted",
    )
    message: str = Field(
        min_length=1,
        max_length=10000,
        description="The user's chat message",
        examples=["I've had a really rough week at work."],
    )


class ChatResponse(BaseModel):
    """Response body for a completed (non-streaming) chat turn."""

    session_id: str = Field(description="Session the turn belongs to")
    response: str = Field(description="Mollei's reply")
    turn_number: int = Field(ge=1, description="1-based turn index within the session")
    latency_ms: int = Field(ge=0, description="Total pipeline latency")
    crisis_detected: bool = Field(
        default=False,
        description="Whether the Safety Monitor flagged a crisis",
    )


class AgentCostBreakdown(BaseModel):
    """LLM usage for one agent within one turn."""

    calls: int
    cost: float
    input_tokens: int
    output_tokens: int
    avg_duration_ms: float


class CostSummaryResponse(BaseModel):
    """Estimated LLM cost for one pipeline run."""

    trace_id: str
    total_cost: float = Field(description="Estimated USD cost")
    total_input_tokens: int
    total_output_tokens: int
    total_calls: int
    total_duration_ms: int
    by_agent: dict[str, AgentCostBreakdown] = Field(default_factory=dict)
    complete: bool = Field(description="Whether pipeline_end has been observed")


class HealthResponse(BaseModel):
    """Health check response with circuit breaker status."""

    status: Literal["healthy", "degraded"] = Field(
        description="'degraded' when any agent circuit is not closed",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    circuits: dict[str, str] = Field(
        default_factory=dict,
        description="Circuit breaker state per agent id",
    )
