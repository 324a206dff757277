"""Conversation history cache.

The Memory Agent reads recent turns from here and the chat service writes
each completed turn back. The storage backend is pluggable through
``ConversationCacheBackend``: Redis when ``redis_url`` is configured,
otherwise in memory.

Usage:
    >>> cache = get_conversation_cache()
    >>> await cache.cache_turn(CachedTurn(session_id="s1", turn_number=1, ...))
    >>> await cache.get_session_context("s1", max_turns=5)
    'Turn 1:\\nUser: ...\\nMollei: ...'
"""

import asyncio
import threading
import time
import uuid
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field
from redis.asyncio import Redis
from redis.exceptions import RedisError

from config import settings

logger = structlog.get_logger(__name__)

NEW_SESSION_CONTEXT = "No prior context (new session)"
CLEANUP_INTERVAL_SECONDS = 60.0


class CachedTurn(BaseModel):
    """One completed exchange.

    Attributes:
        id: Unique turn identifier
        session_id: Owning session
        turn_number: 1-based index within the session
        user_message: Sanitized user message
        mollei_response: Final reply text
        user_emotion: Mood Sensor reading
        mollei_emotion: Emotion Reasoner stance
        crisis_detected: Safety Monitor flag
        crisis_severity: Safety Monitor severity
        latency_ms: Total pipeline latency
        created_at: ISO 8601 UTC timestamp
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: str
    turn_number: int
    user_message: str
    mollei_response: str
    user_emotion: dict[str, Any] = Field(default_factory=dict)
    mollei_emotion: dict[str, Any] = Field(default_factory=dict)
    crisis_detected: bool | None = None
    crisis_severity: int | None = None
    latency_ms: int | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


class ConversationCacheBackend(Protocol):
    """Storage operations the cache facade relies on."""

    async def get_session_turns(self, session_id: str, limit: int = 10) -> list[CachedTurn]: ...

    async def set_session_turn(self, turn: CachedTurn) -> None: ...

    async def get_session_summary(self, session_id: str) -> str | None: ...

    async def set_session_summary(self, session_id: str, summary: str) -> None: ...

    async def close(self) -> None: ...


class InMemoryConversationCache:
    """Process-local backend.

    Keeps at most ``max_turns_per_session`` turns per session. Sessions idle
    for longer than ``session_ttl_seconds`` and summaries older than
    ``summary_ttl_seconds`` are dropped by a cleanup pass that runs at most
    once per minute, piggybacked on writes.
    """

    def __init__(
        self,
        max_turns_per_session: int | None = None,
        session_ttl_seconds: float | None = None,
        summary_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_turns_per_session = max_turns_per_session or settings.cache_max_turns_per_session
        self.session_ttl_seconds = session_ttl_seconds or settings.cache_session_ttl_seconds
        self.summary_ttl_seconds = summary_ttl_seconds or settings.cache_summary_ttl_seconds
        self._clock = clock
        self._turns: dict[str, deque[CachedTurn]] = {}
        self._last_write: dict[str, float] = {}
        self._summaries: dict[str, tuple[str, float]] = {}
        self._last_cleanup = clock()
        self._lock = asyncio.Lock()

    async def get_session_turns(self, session_id: str, limit: int = 10) -> list[CachedTurn]:
        """Return up to ``limit`` most recent turns, newest first."""
        if limit <= 0:
            return []
        async with self._lock:
            if self._is_expired(session_id):
                self._drop_session(session_id)
                return []
            turns = list(self._turns.get(session_id, ()))
        return list(reversed(turns[-limit:]))

    async def set_session_turn(self, turn: CachedTurn) -> None:
        async with self._lock:
            turns = self._turns.get(turn.session_id)
            if turns is None:
                turns = deque(maxlen=self.max_turns_per_session)
                self._turns[turn.session_id] = turns
            turns.append(turn)
            self._last_write[turn.session_id] = self._clock()
            self._maybe_cleanup()

    async def get_session_summary(self, session_id: str) -> str | None:
        async with self._lock:
            entry = self._summaries.get(session_id)
            if entry is None:
                return None
            summary, expires_at = entry
            if self._clock() > expires_at:
                del self._summaries[session_id]
                return None
            return summary

    async def set_session_summary(self, session_id: str, summary: str) -> None:
        async with self._lock:
            self._summaries[session_id] = (summary, self._clock() + self.summary_ttl_seconds)
            self._maybe_cleanup()

    async def close(self) -> None:
        async with self._lock:
            self._turns.clear()
            self._last_write.clear()
            self._summaries.clear()

    def _is_expired(self, session_id: str) -> bool:
        last_write = self._last_write.get(session_id)
        return last_write is not None and self._clock() - last_write > self.session_ttl_seconds

    def _drop_session(self, session_id: str) -> None:
        self._turns.pop(session_id, None)
        self._last_write.pop(session_id, None)

    def _maybe_cleanup(self) -> None:
        now = self._clock()
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        self._last_cleanup = now

        expired_sessions = [sid for sid in self._last_write if self._is_expired(sid)]
        for session_id in expired_sessions:
            self._drop_session(session_id)
        expired_summaries = [
            sid for sid, (_, expires_at) in self._summaries.items() if now > expires_at
        ]
        for session_id in expired_summaries:
            del self._summaries[session_id]

        if expired_sessions or expired_summaries:
            logger.debug(
                "conversation_cache_cleanup",
                sessions_removed=len(expired_sessions),
                summaries_removed=len(expired_summaries),
            )


class ConversationCache:
    """Facade used by the Memory Agent and the chat service."""

    def __init__(self, backend: ConversationCacheBackend | None = None) -> None:
        self.backend: ConversationCacheBackend = backend or InMemoryConversationCache()

    async def get_session_context(self, session_id: str, max_turns: int = 5) -> str:
        """Format the most recent turns (newest first) as model context."""
        turns = await self.backend.get_session_turns(session_id, max_turns)
        if not turns:
            return NEW_SESSION_CONTEXT
        return "\n\n".join(
            f"Turn {t.turn_number}:\nUser: {t.user_message}\nMollei: {t.mollei_response}"
            for t in turns
        )

    async def cache_turn(self, turn: CachedTurn) -> None:
        await self.backend.set_session_turn(turn)

    async def get_recent_turns(self, session_id: str, limit: int = 10) -> list[CachedTurn]:
        return await self.backend.get_session_turns(session_id, limit)

    async def get_next_turn_number(self, session_id: str) -> int:
        """1 for a new session, otherwise one past the latest cached turn."""
        turns = await self.backend.get_session_turns(session_id, 1)
        if not turns:
            return 1
        return turns[0].turn_number + 1

    async def get_session_summary(self, session_id: str) -> str | None:
        return await self.backend.get_session_summary(session_id)

    async def set_session_summary(self, session_id: str, summary: str) -> None:
        await self.backend.set_session_summary(session_id, summary)

    async def close(self) -> None:
        await self.backend.close()


class RedisConversationCache:
    """Redis backend with a temporary in-memory fallback.

    Turns live in a capped list per session and summaries in plain keys,
    both with TTLs. Any Redis error switches the backend to its in-memory
    store for ``fallback_seconds``; Redis is tried again after that.
    """

    def __init__(
        self,
        client: Redis,
        fallback: InMemoryConversationCache | None = None,
        max_turns_per_session: int | None = None,
        session_ttl_seconds: int | None = None,
        summary_ttl_seconds: int | None = None,
        fallback_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = client
        self.fallback = fallback or InMemoryConversationCache()
        self.max_turns_per_session = max_turns_per_session or settings.cache_max_turns_per_session
        self.session_ttl_seconds = session_ttl_seconds or settings.cache_session_ttl_seconds
        self.summary_ttl_seconds = summary_ttl_seconds or settings.cache_summary_ttl_seconds
        self.fallback_seconds = (
            fallback_seconds if fallback_seconds is not None else settings.redis_fallback_seconds
        )
        self._clock = clock
        self._fallback_until: float | None = None

    @staticmethod
    def _turns_key(session_id: str) -> str:
        return f"session:{session_id}:turns"

    @staticmethod
    def _summary_key(session_id: str) -> str:
        return f"session:{session_id}:summary"

    @property
    def using_fallback(self) -> bool:
        if self._fallback_until is None:
            return False
        if self._clock() >= self._fallback_until:
            self._fallback_until = None
            logger.info("conversation_cache_redis_restored")
            return False
        return True

    def _activate_fallback(self, operation: str, error: RedisError) -> None:
        self._fallback_until = self._clock() + self.fallback_seconds
        logger.warning(
            "conversation_cache_redis_error",
            operation=operation,
            error=str(error),
            fallback_seconds=self.fallback_seconds,
        )

    async def get_session_turns(self, session_id: str, limit: int = 10) -> list[CachedTurn]:
        if limit <= 0:
            return []
        if self.using_fallback:
            return await self.fallback.get_session_turns(session_id, limit)
        try:
            raw = await self._redis.lrange(self._turns_key(session_id), -limit, -1)
        except RedisError as e:
            self._activate_fallback("get_session_turns", e)
            return await self.fallback.get_session_turns(session_id, limit)
        return [CachedTurn.model_validate_json(item) for item in reversed(raw)]

    async def set_session_turn(self, turn: CachedTurn) -> None:
        if self.using_fallback:
            await self.fallback.set_session_turn(turn)
            return
        key = self._turns_key(turn.session_id)
        try:
            await self._redis.rpush(key, turn.model_dump_json())
            await self._redis.ltrim(key, -self.max_turns_per_session, -1)
            await self._redis.expire(key, self.session_ttl_seconds)
        except RedisError as e:
            self._activate_fallback("set_session_turn", e)
            await self.fallback.set_session_turn(turn)

    async def get_session_summary(self, session_id: str) -> str | None:
        if self.using_fallback:
            return await self.fallback.get_session_summary(session_id)
        try:
            return await self._redis.get(self._summary_key(session_id))
        except RedisError as e:
            self._activate_fallback("get_session_summary", e)
            return await self.fallback.get_session_summary(session_id)

    async def set_session_summary(self, session_id: str, summary: str) -> None:
        if self.using_fallback:
            await self.fallback.set_session_summary(session_id, summary)
            return
        try:
            await self._redis.set(
                self._summary_key(session_id), summary, ex=self.summary_ttl_seconds
            )
        except RedisError as e:
            self._activate_fallback("set_session_summary", e)
            await self.fallback.set_session_summary(session_id, summary)

    async def close(self) -> None:
        await self.fallback.close()
        await self._redis.aclose()


def create_conversation_cache_backend() -> ConversationCacheBackend:
    """Pick the backend from settings: Redis when ``redis_url`` is set."""
    if settings.redis_url:
        logger.info("conversation_cache_backend", backend="redis")
        return RedisConversationCache(
            Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        )
    logger.info("conversation_cache_backend", backend="memory")
    return InMemoryConversationCache()


_conversation_cache: ConversationCache | None = None
_cache_lock = threading.Lock()


def get_conversation_cache() -> ConversationCache:
    """Get the global ConversationCache instance.

    Creates the instance on first call (lazy initialization).

    Returns:
        The global ConversationCache instance
    """
    global _conversation_cache
    if _conversation_cache is None:
        with _cache_lock:
            if _conversation_cache is None:
                _conversation_cache = ConversationCache(create_conversation_cache_backend())
    return _conversation_cache


def reset_conversation_cache() -> None:
    """Reset the global ConversationCache. Primarily useful for testing."""
    global _conversation_cache
    with _cache_lock:
        _conversation_cache = None
