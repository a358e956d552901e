"""Health check endpoint.

Probes the relational store and Redis. The database is required for every
transition; Redis only backs idempotency keys and the optional notification
channel, so losing it degrades the service instead of taking it down.
"""

from __future__ import annotations

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from marketplace_deals.config import get_settings
from marketplace_deals.infrastructure.database.engine import _get_engine
from marketplace_deals.infrastructure.redis_client import get_redis
from marketplace_deals.logging_config import get_logger
from marketplace_deals.schemas.projects import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


async def _probe_database() -> str:
    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health.db_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


async def _probe_redis() -> str:
    try:
        await get_redis().ping()
    except Exception as exc:
        logger.warning("health.redis_check_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns 503 when the database is unreachable, 'degraded' when only Redis is.",
)
async def health_check(response: Response) -> HealthResponse:
    settings = get_settings()
    database = await _probe_database()
    redis = await _probe_redis()

    if database != "healthy":
        overall = "unavailable"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif redis != "healthy":
        overall = "degraded"
    else:
        overall = "ok"

    return HealthResponse(
        status=overall,
        database=database,
        redis=redis,
        notifications=settings.notification_backend,
    )
