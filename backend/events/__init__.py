"""Streaming events for pipeline-to-client communication.

This package provides the event infrastructure between a running chat
pipeline and the HTTP client. Events are pushed onto an asyncio.Queue by the
pipeline and drained into a Server-Sent Events response by the route.

Key Components:
    - StreamEventType: Enum of event types delivered to clients
    - StreamEvent: Pydantic model for one event, with SSE encoding
    - StreamChannel: Protocol the pipeline depends on
    - QueueStreamChannel: asyncio.Queue implementation used by the SSE route

Event Flow:
    1. The route creates a QueueStreamChannel and starts the pipeline
    2. The orchestrator sends progress events; the Response Generator sends deltas
    3. The chat service sends the final result (or an error) and closes the channel
    4. The route yields each event as an SSE frame
"""

from events.channel import QueueStreamChannel, StreamChannel
from events.types import StreamEvent, StreamEventType

__all__ = [
    "StreamEventType",
    "StreamEvent",
    "StreamChannel",
    "QueueStreamChannel",
]
