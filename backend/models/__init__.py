"""Models module for Pydantic schemas.

This module exposes all request/response models used by the API.
"""

from models.schemas import (
    AgentCostBreakdown,
    ChatRequest,
    ChatResponse,
    CostSummaryResponse,
    HealthResponse,
)

__all__ = [
    "AgentCostBreakdown",
    "ChatRequest",
    "ChatResponse",
    "CostSummaryResponse",
    "HealthResponse",
]
