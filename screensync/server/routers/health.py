"""
Health, readiness and liveness endpoints.

The service is ready when its database answers and it holds a usable
platform token. Redis only backs the diagnostics cache, so losing it
degrades ``/health`` without taking the service out of rotation.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from screensync.common.cache import redis_client
from screensync.common.config import get_settings
from screensync.common.database import get_session
from screensync.common.logger import get_logger
from screensync.platform.client import PlatformClient
from screensync.schemas.response import HealthResponse
from screensync.server.deps import get_platform_client

logger = get_logger(__name__)

router = APIRouter()


async def _database_ok(session: AsyncSession) -> bool:
    try:
        await session.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error("Database health check failed", error=str(e))
        return False


async def _redis_ok() -> bool:
    if not redis_client.is_connected:
        return False
    return await redis_client.health_check()


@router.get("/health", response_model=HealthResponse)
async def health_check(
    session: AsyncSession = Depends(get_session),
    client: PlatformClient = Depends(get_platform_client),
) -> HealthResponse:
    """Service status with the state of each dependency."""
    database = await _database_ok(session)
    redis = await _redis_ok()
    platform_auth = client.auth_configured

    return HealthResponse(
        status="healthy" if (database and redis and platform_auth) else "degraded",
        version=get_settings().app_version,
        database=database,
        redis=redis,
        platform_auth_configured=platform_auth,
        platform_base_url=client.base_url,
    )


@router.get("/ping")
async def ping() -> dict:
    """Simple ping endpoint."""
    return {"pong": True}


@router.get("/ready")
async def readiness_check(
    session: AsyncSession = Depends(get_session),
    client: PlatformClient = Depends(get_platform_client),
) -> dict:
    """Readiness check for Kubernetes."""
    reasons = []
    if not await _database_ok(session):
        reasons.append("database unavailable")
    if not client.auth_configured:
        reasons.append("platform token missing or malformed")

    if reasons:
        return {"ready": False, "reasons": reasons}
    return {"ready": True}


@router.get("/live")
async def liveness_check() -> dict:
    """Liveness check for Kubernetes."""
    return {"alive": True}
