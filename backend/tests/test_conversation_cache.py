"""Tests for cache/conversation_cache.py -- recent-turn history per session.

Covers ordering and limits, per-session caps, TTL expiry with an injected
clock, turn numbering, the formatted Memory Agent context and the Redis
backend with its in-memory fallback.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from cache import (
    NEW_SESSION_CONTEXT,
    CachedTurn,
    ConversationCache,
    InMemoryConversationCache,
    RedisConversationCache,
    get_conversation_cache,
    reset_conversation_cache,
)
from cache.conversation_cache import create_conversation_cache_backend
from config import settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _turn(n: int, session_id: str = "sess-a") -> CachedTurn:
    return CachedTurn(
        session_id=session_id,
        turn_number=n,
        user_message=f"user {n}",
        mollei_response=f"mollei {n}",
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def backend(clock: FakeClock) -> InMemoryConversationCache:
    return InMemoryConversationCache(
        max_turns_per_session=5,
        session_ttl_seconds=100,
        summary_ttl_seconds=50,
        clock=clock,
    )


# =========================================================================
# Backend
# =========================================================================


class TestInMemoryBackend:
    async def test_newest_first_with_limit(self, backend: InMemoryConversationCache) -> None:
        for n in range(1, 5):
            await backend.set_session_turn(_turn(n))
        turns = await backend.get_session_turns("sess-a", limit=2)
        assert [t.turn_number for t in turns] == [4, 3]

    async def test_unknown_session_is_empty(self, backend: InMemoryConversationCache) -> None:
        assert await backend.get_session_turns("missing") == []

    async def test_zero_limit(self, backend: InMemoryConversationCache) -> None:
        await backend.set_session_turn(_turn(1))
        assert await backend.get_session_turns("sess-a", limit=0) == []

    async def test_per_session_cap(self, backend: InMemoryConversationCache) -> None:
        for n in range(1, 9):
            await backend.set_session_turn(_turn(n))
        turns = await backend.get_session_turns("sess-a", limit=100)
        assert [t.turn_number for t in turns] == [8, 7, 6, 5, 4]

    async def test_sessions_isolated(self, backend: InMemoryConversationCache) -> None:
        await backend.set_session_turn(_turn(1, "sess-a"))
        await backend.set_session_turn(_turn(1, "sess-b"))
        await backend.set_session_turn(_turn(2, "sess-b"))
        assert len(await backend.get_session_turns("sess-a")) == 1
        assert len(await backend.get_session_turns("sess-b")) == 2

    async def test_idle_session_expires(
        self, backend: InMemoryConversationCache, clock: FakeClock
    ) -> None:
        await backend.set_session_turn(_turn(1))
        clock.now = 101
        assert await backend.get_session_turns("sess-a") == []

    async def test_write_refreshes_session(
        self, backend: InMemoryConversationCache, clock: FakeClock
    ) -> None:
        await backend.set_session_turn(_turn(1))
        clock.now = 90
        await backend.set_session_turn(_turn(2))
        clock.now = 150
        assert len(await backend.get_session_turns("sess-a")) == 2

    async def test_summary_ttl(self, backend: InMemoryConversationCache, clock: FakeClock) -> None:
        await backend.set_session_summary("sess-a", "Talked about exams")
        assert await backend.get_session_summary("sess-a") == "Talked about exams"
        clock.now = 51
        assert await backend.get_session_summary("sess-a") is None

    async def test_cleanup_runs_on_write(
        self, backend: InMemoryConversationCache, clock: FakeClock
    ) -> None:
        await backend.set_session_turn(_turn(1, "stale"))
        clock.now = 200
        await backend.set_session_turn(_turn(1, "fresh"))
        assert "stale" not in backend._turns
        assert "fresh" in backend._turns

    async def test_close_clears_everything(self, backend: InMemoryConversationCache) -> None:
        await backend.set_session_turn(_turn(1))
        await backend.set_session_summary("sess-a", "x")
        await backend.close()
        assert await backend.get_session_turns("sess-a") == []
        assert await backend.get_session_summary("sess-a") is None


# =========================================================================
# Facade
# =========================================================================


class TestConversationCache:
    async def test_new_session_context(self, backend: InMemoryConversationCache) -> None:
        cache = ConversationCache(backend)
        assert await cache.get_session_context("sess-a") == NEW_SESSION_CONTEXT

    async def test_context_format(self, backend: InMemoryConversationCache) -> None:
        cache = ConversationCache(backend)
        await cache.cache_turn(_turn(1))
        await cache.cache_turn(_turn(2))
        context = await cache.get_session_context("sess-a", max_turns=5)
        assert context == "Turn 2:\nUser: user 2\nMollei: mollei 2\n\nTurn 1:\nUser: user 1\nMollei: mollei 1"

    async def test_next_turn_number(self, backend: InMemoryConversationCache) -> None:
        cache = ConversationCache(backend)
        assert await cache.get_next_turn_number("sess-a") == 1
        await cache.cache_turn(_turn(1))
        await cache.cache_turn(_turn(2))
        assert await cache.get_next_turn_number("sess-a") == 3

    async def test_recent_turns_and_summary(self, backend: InMemoryConversationCache) -> None:
        cache = ConversationCache(backend)
        await cache.cache_turn(_turn(1))
        await cache.set_session_summary("sess-a", "summary")
        assert [t.turn_number for t in await cache.get_recent_turns("sess-a")] == [1]
        assert await cache.get_session_summary("sess-a") == "summary"

    def test_cached_turn_defaults(self) -> None:
        turn = _turn(1)
        assert turn.id
        assert turn.created_at.endswith("+00:00")
        assert turn.user_emotion == {}
        assert turn.crisis_detected is None

    def test_global_singleton_and_reset(self) -> None:
        first = get_conversation_cache()
        assert get_conversation_cache() is first
        reset_conversation_cache()
        assert get_conversation_cache() is not first


# =========================================================================
# Redis backend
# =========================================================================


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the conversation cache."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.values: dict[str, str] = {}
        self.expiries: dict[str, int] = {}
        self.failing = False
        self.closed = False

    def _check(self) -> None:
        if self.failing:
            raise RedisConnectionError("connection refused")

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        self._check()
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    async def rpush(self, key: str, value: str) -> int:
        self._check()
        self.lists.setdefault(key, []).append(value)
        return len(self.lists[key])

    async def ltrim(self, key: str, start: int, end: int) -> None:
        self._check()
        self.lists[key] = self.lists.get(key, [])[start:]

    async def expire(self, key: str, seconds: int) -> None:
        self._check()
        self.expiries[key] = seconds

    async def get(self, key: str) -> str | None:
        self._check()
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self._check()
        self.values[key] = value
        if ex is not None:
            self.expiries[key] = ex

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture()
def redis_client() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def redis_backend(redis_client: FakeRedis, clock: FakeClock) -> RedisConversationCache:
    return RedisConversationCache(
        redis_client,
        max_turns_per_session=3,
        session_ttl_seconds=100,
        summary_ttl_seconds=50,
        fallback_seconds=30,
        clock=clock,
    )


class TestRedisBackend:
    async def test_writes_capped_list_with_ttl(
        self, redis_backend: RedisConversationCache, redis_client: FakeRedis
    ) -> None:
        for n in range(1, 6):
            await redis_backend.set_session_turn(_turn(n))
        stored = redis_client.lists["session:sess-a:turns"]
        assert [CachedTurn.model_validate_json(s).turn_number for s in stored] == [3, 4, 5]
        assert redis_client.expiries["session:sess-a:turns"] == 100

    async def test_newest_first_with_limit(self, redis_backend: RedisConversationCache) -> None:
        for n in range(1, 4):
            await redis_backend.set_session_turn(_turn(n))
        turns = await redis_backend.get_session_turns("sess-a", limit=2)
        assert [t.turn_number for t in turns] == [3, 2]
        assert turns[0].user_message == "user 3"
        assert await redis_backend.get_session_turns("sess-a", limit=0) == []

    async def test_summary_round_trip(
        self, redis_backend: RedisConversationCache, redis_client: FakeRedis
    ) -> None:
        await redis_backend.set_session_summary("sess-a", "feeling better")
        assert await redis_backend.get_session_summary("sess-a") == "feeling better"
        assert redis_client.expiries["session:sess-a:summary"] == 50

    async def test_error_switches_to_fallback(
        self, redis_backend: RedisConversationCache, redis_client: FakeRedis
    ) -> None:
        redis_client.failing = True
        await redis_backend.set_session_turn(_turn(1))
        assert redis_backend.using_fallback is True
        redis_client.failing = False
        # Still served from memory while the fallback window is open
        turns = await redis_backend.get_session_turns("sess-a")
        assert [t.turn_number for t in turns] == [1]
        assert redis_client.lists == {}

    async def test_fallback_expires(
        self, redis_backend: RedisConversationCache, redis_client: FakeRedis, clock: FakeClock
    ) -> None:
        redis_client.failing = True
        assert await redis_backend.get_session_summary("sess-a") is None
        redis_client.failing = False
        clock.now = 29.0
        assert redis_backend.using_fallback is True
        clock.now = 30.0
        assert redis_backend.using_fallback is False
        await redis_backend.set_session_summary("sess-a", "back on redis")
        assert redis_client.values["session:sess-a:summary"] == "back on redis"

    async def test_facade_over_redis(self, redis_backend: RedisConversationCache) -> None:
        cache = ConversationCache(redis_backend)
        await cache.cache_turn(_turn(1))
        assert await cache.get_next_turn_number("sess-a") == 2

    async def test_close_releases_client(
        self, redis_backend: RedisConversationCache, redis_client: FakeRedis
    ) -> None:
        await redis_backend.close()
        assert redis_client.closed is True


class TestBackendSelection:
    def test_memory_without_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "redis_url", None)
        assert isinstance(create_conversation_cache_backend(), InMemoryConversationCache)

    def test_redis_with_url(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(settings, "redis_url", "redis://localhost:6379/0")
        assert isinstance(create_conversation_cache_backend(), RedisConversationCache)
