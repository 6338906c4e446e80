"""
Health and Monitoring Router.

Public, unauthenticated endpoints for health checks and operational insight
into the Portfolio Live API.

Endpoints Provided:
- `/healthcheck`: lightweight liveness check.
- `/monitoring/ping`: connectivity test.
- `/monitoring/detailed`: status of the database, the identity cache and the
  real-time broadcaster. A failing component turns the overall status into
  "degraded" instead of failing the request.
- `/monitoring/cache/stats`: identity cache backend statistics.
"""

from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Depends

from api.dependencies import get_broadcaster, get_cache_manager, get_database
from core.cache import CacheManager
from core.database import Database
from core.logging_config import get_logger
from services.broadcast_service import UpdateBroadcaster

logger = get_logger(__name__)

SERVICE_NAME = "Portfolio Live API"
VERSION = "1.0.0"

health_router = APIRouter(tags=["Health & Monitoring"])

monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint (no authentication required)

    Returns:
        Dict with status, timestamp, and version info
    """
    logger.debug("Health check requested")

    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    """Simple ping endpoint for connectivity testing"""
    logger.debug("Ping requested")
    return {
        "message": "pong",
        "timestamp": datetime.utcnow().isoformat(),
        "version": VERSION,
    }


@monitoring_router.get("/detailed")
async def detailed_health_check(
    database: Database = Depends(get_database),
    cache: CacheManager = Depends(get_cache_manager),
    broadcaster: UpdateBroadcaster = Depends(get_broadcaster),
) -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": VERSION,
        "service": SERVICE_NAME,
        "components": {},
    }

    db_health = await database.health_check()
    health_status["components"]["database"] = db_health
    if db_health.get("status") != "healthy":
        logger.error(f"Database health check failed: {db_health.get('error')}")
        health_status["status"] = "degraded"

    cache_health = await cache.health_check()
    health_status["components"]["cache"] = cache_health
    if cache_health.get("status") != "healthy":
        health_status["status"] = "degraded"

    health_status["components"]["realtime"] = {
        "status": "healthy",
        "stats": broadcaster.stats(),
    }

    return health_status


@monitoring_router.get("/cache/stats")
async def get_cache_stats(
    cache: CacheManager = Depends(get_cache_manager),
) -> Dict[str, Any]:
    """Get cache statistics (no authentication required for monitoring)"""
    logger.info("Cache stats requested")

    try:
        stats = await cache.stats()
        return {"cache_stats": stats, "timestamp": datetime.utcnow().isoformat()}
    except Exception as e:
        logger.error(f"Cache stats collection failed: {e}")
        return {
            "error": "Cache stats temporarily unavailable",
            "message": str(e),
            "timestamp": datetime.utcnow().isoformat(),
        }
