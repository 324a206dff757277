"""Conversation history cache used by the Memory Agent and chat service."""

from cache.conversation_cache import (
    NEW_SESSION_CONTEXT,
    CachedTurn,
    ConversationCache,
    ConversationCacheBackend,
    InMemoryConversationCache,
    RedisConversationCache,
    get_conversation_cache,
    reset_conversation_cache,
)

__all__ = [
    "NEW_SESSION_CONTEXT",
    "CachedTurn",
    "ConversationCache",
    "ConversationCacheBackend",
    "InMemoryConversationCache",
    "RedisConversationCache",
    "get_conversation_cache",
    "reset_conversation_cache",
]
