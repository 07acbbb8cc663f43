"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services, the rail registry, Redis clients, and configuration. Long-lived
collaborators (rail registry, event publisher) live on app.state and are
created in the lifespan.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from fund_custody.config import Settings, get_settings
from fund_custody.infrastructure.database.engine import get_async_session
from fund_custody.infrastructure.redis_client import get_redis
from fund_custody.rails import RailRegistry
from fund_custody.services.batch_file_service import BatchFileService
from fund_custody.services.event_publisher import EventPublisher, LoggingEventPublisher
from fund_custody.services.hold_registry import HoldRegistry
from fund_custody.services.rail_service import RailService
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import TransferExecutor


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_rail_registry(request: Request) -> RailRegistry:
    """Provide the registry built at startup."""
    return request.app.state.rail_registry


def get_event_publisher(request: Request) -> EventPublisher:
    return getattr(request.app.state, "event_publisher", None) or LoggingEventPublisher()


def get_redis_client() -> aioredis.Redis:
    """Provide the Redis client."""
    return get_redis()


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


async def get_hold_registry(
    session: AsyncSession = Depends(get_db_session),
) -> HoldRegistry:
    return HoldRegistry(session)


async def get_transfer_executor(
    session: AsyncSession = Depends(get_db_session),
    registry: RailRegistry = Depends(get_rail_registry),
    publisher: EventPublisher = Depends(get_event_publisher),
) -> TransferExecutor:
    return TransferExecutor(session, registry, publisher)


async def get_release_coordinator(
    session: AsyncSession = Depends(get_db_session),
    executor: TransferExecutor = Depends(get_transfer_executor),
) -> ReleaseCoordinator:
    """Provide a ReleaseCoordinator sharing the request's session with its executor."""
    return ReleaseCoordinator(session, executor)


async def get_rail_service(
    session: AsyncSession = Depends(get_db_session),
    registry: RailRegistry = Depends(get_rail_registry),
) -> RailService:
    return RailService(session, registry)


async def get_batch_file_service(
    session: AsyncSession = Depends(get_db_session),
    registry: RailRegistry = Depends(get_rail_registry),
    redis: aioredis.Redis = Depends(get_redis_client),
) -> BatchFileService:
    return BatchFileService(session, registry, redis)
