"""FastAPI application entry point for the Mollei backend.

This module initializes the FastAPI application with all middleware,
routers, and event handlers configured.

Usage:
    uv run uvicorn main:app --reload
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router, set_chat_service
from chat_service import ChatService
from config import configure_logging, settings
from metrics import get_cost_aggregator
from tracing import log_trace_handler, register_trace_handler, unregister_trace_handler

# Configure structured logging
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events.

    Wires the chat service into the routes and registers the trace
    handlers (structured log output and cost aggregation).

    Args:
        app: The FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # Startup
    logger.info(
        "application_starting",
        backend_port=settings.backend_port,
        log_level=settings.log_level,
        response_model=settings.response_model,
    )

    cost_aggregator = get_cost_aggregator()
    register_trace_handler(log_trace_handler)
    register_trace_handler(cost_aggregator.handle)

    chat_service = ChatService()
    set_chat_service(chat_service)
    app.state.chat_service = chat_service

    logger.info("application_started")

    yield

    # Shutdown
    logger.info("application_shutting_down")

    unregister_trace_handler(cost_aggregator.handle)
    unregister_trace_handler(log_trace_handler)
    await chat_service.cache.close()
    set_chat_service(None)

    logger.info("application_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="Mollei",
    description="Backend API for Mollei, an emotionally intelligent companion "
    "driven by a multi-agent conversation pipeline.",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["*"],
)

# Include HTTP routes
app.include_router(router, tags=["chat"])


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Root endpoint that redirects to API documentation.

    Returns:
        A welcome message with documentation URL.
    """
    return {
        "message": "Mollei API",
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.backend_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
