"""Liveness of the custody service and the stores it depends on.

The ledger database is required: without it nothing can be held or released.
Redis only carries batch-file download links and release events, so losing
it degrades the service rather than taking it down.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from sqlalchemy import text

from fund_custody.logging_config import get_logger
from fund_custody.schemas.release import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def _database_ok() -> bool:
    from fund_custody.infrastructure.database.engine import _get_engine

    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.database_unreachable", error=type(exc).__name__)
        return False
    return True


async def _redis_ok() -> bool:
    from fund_custody.infrastructure.redis_client import get_redis

    try:
        await get_redis().ping()
    except Exception as exc:
        logger.warning("health.redis_unreachable", error=type(exc).__name__)
        return False
    return True


@router.get("/health", response_model=HealthResponse, summary="Service health")
async def health_check(request: Request) -> HealthResponse:
    """`ok`, `degraded` (Redis down) or `unhealthy` (ledger database down)."""
    database = await _database_ok()
    redis = await _redis_ok()

    if not database:
        status = "unhealthy"
    elif not redis:
        status = "degraded"
    else:
        status = "ok"

    registry = getattr(request.app.state, "rail_registry", None)
    return HealthResponse(
        status=status,
        database="healthy" if database else "unhealthy",
        redis="healthy" if redis else "unhealthy",
        rails=registry.names() if registry is not None else [],
    )
