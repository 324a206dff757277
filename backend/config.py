"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Mollei backend.
All settings can be overridden via environment variables or a .env file.
"""

import json
import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        fast_model: Model for the analysis agents (mood, memory, safety, reasoner).
        response_model: Model for regular response generation.
        crisis_model: Highest-tier model used when crisis support is required.
        mood_sensor_timeout_ms: Deadline for the Mood Sensor stage.
        memory_agent_timeout_ms: Deadline for the Memory Agent stage.
        safety_monitor_timeout_ms: Deadline for the Safety Monitor stage.
        emotion_reasoner_timeout_ms: Deadline for the Emotion Reasoner stage.
        response_generator_timeout_ms: Deadline for the Response Generator stage.
        pipeline_total_timeout_ms: Overall budget callers may enforce externally.
        circuit_failure_threshold: Consecutive failures before a circuit opens.
        circuit_reset_timeout_seconds: Cooldown before an open circuit half-opens.
        circuit_half_open_max_requests: Trial requests admitted while half-open.
        memory_context_turns: Recent turns handed to the Memory Agent.
        cache_max_turns_per_session: Turns retained per session in the cache.
        cache_session_ttl_seconds: Idle session expiry for cached turns.
        cache_summary_ttl_seconds: Expiry for cached session summaries.
        redis_url: Redis connection URL for the conversation cache; in-memory if unset.
        redis_fallback_seconds: How long the cache stays in memory after a Redis error.
        max_message_length: Maximum accepted user message length.
        stream_heartbeat_seconds: Idle interval before an SSE heartbeat is sent.
        trace_enabled: If True, trace events and spans are written to the log.
        cost_logging_enabled: If True, per-turn cost summaries are logged.
        backend_port: Port for the FastAPI server.
        cors_origins: Allowed origins for CORS.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # Models must include provider prefix for LiteLLM (e.g., anthropic/)
    fast_model: str = "anthropic/claude-haiku-4-5"
    response_model: str = "anthropic/claude-sonnet-4-5"
    crisis_model: str = "anthropic/claude-opus-4-5"

    # Agent deadlines
    mood_sensor_timeout_ms: int = 300
    memory_agent_timeout_ms: int = 500
    safety_monitor_timeout_ms: int = 300
    emotion_reasoner_timeout_ms: int = 500
    response_generator_timeout_ms: int = 1500
    pipeline_total_timeout_ms: int = 3000

    # Circuit breaker
    circuit_failure_threshold: int = 3
    circuit_reset_timeout_seconds: float = 30.0
    circuit_half_open_max_requests: int = 2

    # Conversation cache
    memory_context_turns: int = 5
    cache_max_turns_per_session: int = 50
    cache_session_ttl_seconds: int = 1800
    cache_summary_ttl_seconds: int = 86400
    redis_url: str | None = None
    redis_fallback_seconds: float = 30.0

    # Input / streaming
    max_message_length: int = 10000
    stream_heartbeat_seconds: float = 5.0

    # Observability
    trace_enabled: bool = False
    cost_logging_enabled: bool = False

    # Server Configuration
    backend_port: int = 8000
    cors_origins: str | list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: Any) -> list[str]:
        """Parse CORS origins from string or list.

        Accepts:
        - JSON array: '["http://localhost:3000"]'
        - Comma-separated: 'http://localhost:3000,http://localhost:8080'
        - Single value: 'http://localhost:3000'
        - Already a list: ["http://localhost:3000"]
        """
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        # Support running `uvicorn` from either the repo root or `backend/`
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)
