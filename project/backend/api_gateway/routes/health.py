"""
Health check endpoint.

Monitors service health (database, Redis, queue, media tool).
"""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Response

from api_gateway.dependencies import get_media_tool, get_redis, get_store
from api_gateway.services.queue_service import get_queue_size
from shared.composite_store import CompositeStore
from shared.errors import RetryableError
from shared.logging import get_logger
from shared.media_tool import MediaTool
from shared.redis_client import RedisClient
from shared.resilience import guard_registry

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(
    store: CompositeStore = Depends(get_store),
    redis: RedisClient = Depends(get_redis),
    media_tool: MediaTool = Depends(get_media_tool)
):
    """
    Health check endpoint.

    503 when the database, Redis or the queue is unreachable. A missing media
    tool only degrades the service (stitching returns the first clip).
    """
    issues = []
    status_code = 200

    # Check database
    db_healthy = await store.health_check()
    if not db_healthy:
        issues.append("database connection failed")
        status_code = 503

    # Check Redis
    redis_healthy = await redis.health_check()
    if not redis_healthy:
        issues.append("redis connection failed")
        status_code = 503

    # Check queue
    try:
        queue_size = await get_queue_size(redis)
        queue_healthy = True
    except RetryableError as e:
        logger.warning("Queue health check failed", exc_info=e)
        queue_size = 0
        queue_healthy = False
        issues.append("queue connection failed")
        status_code = 503

    media_tool_available = await media_tool.is_available()
    if not media_tool_available:
        issues.append("media tool not available")

    if status_code != 200:
        overall = "unhealthy"
    elif not media_tool_available:
        overall = "degraded"
    else:
        overall = "healthy"

    response = {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": {
            "size": queue_size,
            "healthy": queue_healthy
        },
        "database": "connected" if db_healthy else "disconnected",
        "redis": "connected" if redis_healthy else "disconnected",
        "media_tool": "available" if media_tool_available else "unavailable",
        "integrations": guard_registry.stats()
    }

    if issues:
        response["issues"] = issues

    return Response(
        content=json.dumps(response),
        status_code=status_code,
        media_type="application/json"
    )
