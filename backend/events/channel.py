"""Streaming channel between a running pipeline and one client.

The orchestrator and the Response Generator only talk to the
``StreamChannel`` protocol; they never own a transport. ``QueueStreamChannel``
is the asyncio.Queue-backed implementation used by the SSE route: producers
push events, and the route drains ``events()`` into the HTTP response.

Usage:
    >>> channel = QueueStreamChannel(trace_id="TURN-1a2b3c4d")
    >>> await channel.send_progress("sensing", "Understanding how you feel...")
    >>> await channel.send_event("delta", {"content": "Hi"})
    >>> await channel.close()
    >>> async for event in channel.events():
    ...     print(event.to_sse())
"""

import asyncio
from collections.abc import AsyncIterator
from typing import Any, Protocol

import structlog

from config import settings
from events.types import StreamEvent, StreamEventType

logger = structlog.get_logger(__name__)


class StreamChannel(Protocol):
    """Interface the pipeline uses to reach a streaming client."""

    @property
    def aborted(self) -> bool: ...

    async def send_progress(self, phase: str, message: str) -> None: ...

    async def send_event(self, kind: str, payload: dict[str, Any]) -> None: ...

    async def send_result(self, payload: dict[str, Any]) -> None: ...

    async def send_error(self, message: str) -> None: ...

    async def close(self) -> None: ...


class QueueStreamChannel:
    """asyncio.Queue backed stream channel.

    Once the channel is aborted or closed, further sends are dropped
    silently; producers never need to check before sending.

    Attributes:
        trace_id: Trace id stamped onto every event
        heartbeat_seconds: Idle interval before a heartbeat event is yielded
    """

    def __init__(self, trace_id: str | None = None, heartbeat_seconds: float | None = None) -> None:
        self.trace_id = trace_id
        self.heartbeat_seconds = (
            heartbeat_seconds if heartbeat_seconds is not None else settings.stream_heartbeat_seconds
        )
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._aborted = False
        self._closed = False
        self.abort_reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def closed(self) -> bool:
        return self._closed

    def abort(self, reason: str = "client_disconnected") -> None:
        """Mark the channel aborted (e.g. the client went away)."""
        if self._aborted:
            return
        self._aborted = True
        self.abort_reason = reason
        logger.info("stream_aborted", trace_id=self.trace_id, reason=reason)
        # Wake a reader blocked in events()
        self._queue.put_nowait(None)

    def _put(self, event_type: StreamEventType, data: dict[str, Any]) -> None:
        if self._aborted or self._closed:
            logger.debug(
                "stream_event_dropped",
                trace_id=self.trace_id,
                event_type=event_type.value,
            )
            return
        self._queue.put_nowait(StreamEvent(type=event_type, trace_id=self.trace_id, data=data))

    async def send_progress(self, phase: str, message: str) -> None:
        self._put(StreamEventType.PROGRESS, {"phase": phase, "message": message})

    async def send_event(self, kind: str, payload: dict[str, Any]) -> None:
        self._put(StreamEventType(kind), payload)

    async def send_result(self, payload: dict[str, Any]) -> None:
        self._put(StreamEventType.RESULT, payload)

    async def send_error(self, message: str) -> None:
        self._put(StreamEventType.ERROR, {"message": message})

    async def close(self) -> None:
        """Close the channel; the reader stops after draining queued events."""
        if self._closed:
            return
        self._closed = True
        await self._queue.put(None)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield queued events until the channel is closed or aborted.

        Events queued before ``close()`` are always drained first. Yields a
        heartbeat event whenever no event arrives within ``heartbeat_seconds``.
        """
        while True:
            if not self._queue.empty():
                event = self._queue.get_nowait()
            else:
                try:
                    event = await asyncio.wait_for(
                        self._queue.get(), timeout=self.heartbeat_seconds
                    )
                except TimeoutError:
                    if self._aborted or (self._closed and self._queue.empty()):
                        return
                    if not self._closed:
                        yield StreamEvent(type=StreamEventType.HEARTBEAT, trace_id=self.trace_id)
                    continue

            if event is None:
                if self._aborted or self._queue.empty():
                    return
                continue
            yield event
