"""FastAPI application entry point for fund custody.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the HTTP client shared by
       the payout rails, and the release event publisher.
    2. Running: Serve REST API + MCP tools on a single Uvicorn process.
    3. Shutdown: Close the rail HTTP client, database and Redis gracefully.

The MCP server is mounted at /mcp so operator agents can discover tools
alongside the REST API at /api/v1/*.

Run with:
    uv run uvicorn fund_custody.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI

from fund_custody.config import get_settings
from fund_custody.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from fund_custody.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (batch-file links and event fan-out degrade without it)
    from fund_custody.infrastructure.redis_client import close_redis, init_redis
    from fund_custody.services.event_publisher import LoggingEventPublisher, RedisEventPublisher

    try:
        redis = await init_redis()
        publisher = RedisEventPublisher(redis, settings.event_channel)
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))
        publisher = LoggingEventPublisher()

    # 4. Payout rails
    from fund_custody.mcp_server.tools import bind_runtime
    from fund_custody.rails import build_rail_registry

    client = httpx.AsyncClient(timeout=settings.rail_timeout_seconds)
    registry = build_rail_registry(client, settings)
    app.state.rail_registry = registry
    app.state.event_publisher = publisher
    bind_runtime(registry, publisher)

    logger.info(
        "app.started",
        host=settings.app_host,
        port=settings.app_port,
        rails=registry.names(),
    )

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await client.aclose()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Fund Custody",
        description=(
            "Holds creator and venture earnings in custody and releases them "
            "over processor, bank-network or NACHA batch-file rails."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from fund_custody.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from fund_custody.api.routes.health import router as health_router
    from fund_custody.api.routes.rails import router as rails_router
    from fund_custody.api.routes.releases import router as releases_router

    app.include_router(health_router)
    app.include_router(releases_router)
    app.include_router(rails_router)

    # --- MCP Server (mounted as sub-application) ---
    from fund_custody.mcp_server.tools import mcp

    mcp_app = mcp.sse_app()
    app.mount("/mcp", mcp_app)

    return app


# The app instance used by Uvicorn
app = create_app()
