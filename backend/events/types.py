"""Event type definitions for the Mollei streaming channel.

This module defines the events that flow from a running pipeline to the
client over Server-Sent Events. Every user-visible pipeline milestone
produces one of these.
"""

import json
import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class StreamEventType(StrEnum):
    """All event types delivered to a streaming client.

    - progress: The pipeline entered a new phase (sensing, reasoning, ...)
    - delta: A chunk of generated response text
    - result: The final turn payload; always the last data event on success
    - error: A generic user-facing failure message
    - heartbeat: Keeps idle connections open through proxies
    """

    PROGRESS = "progress"
    DELTA = "delta"
    RESULT = "result"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


class StreamEvent(BaseModel):
    """An event sent to the client during one chat turn.

    Payload schemas by event type:

    PROGRESS:
        - phase: str - PipelinePhase value
        - message: str - Human-readable status line

    DELTA:
        - content: str - Text chunk to append to the response

    RESULT:
        - session_id: str
        - response: str
        - turn_number: int
        - crisis_detected: bool
        - latency_ms: int - Total pipeline latency

    ERROR:
        - message: str - Generic apology; never internal details

    HEARTBEAT:
        (empty)
    """

    type: StreamEventType
    timestamp: float = Field(default_factory=time.time)
    trace_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_sse(self) -> str:
        """Encode as one Server-Sent Events frame."""
        payload = {
            "type": self.type.value,
            "timestamp": self.timestamp,
            "trace_id": self.trace_id,
            **self.data,
        }
        return f"event: {self.type.value}\ndata: {json.dumps(payload, default=str)}\n\n"
