"""
Event publisher service.

Publishes composite job events to Redis pub/sub for live status consumers.
"""

from typing import Any, Dict, Optional

from shared.errors import RetryableError
from shared.logging import get_logger
from shared.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

EVENT_TYPES = ("stage_update", "progress", "clip_completed", "completed", "error")


def channel_for(job_id: str) -> str:
    return f"job_events:{job_id}"


async def publish_event(
    job_id: str,
    event_type: str,
    data: Dict[str, Any],
    client: Optional[RedisClient] = None
) -> None:
    """
    Publish an event to the job's Redis pub/sub channel.

    Publishing is best-effort: a Redis failure is logged and the job carries on.

    Args:
        job_id: Composite job ID
        event_type: One of EVENT_TYPES
        data: Event payload
        client: Redis client (module singleton when omitted)
    """
    client = client or redis_client
    message = {
        "event_type": event_type,
        "data": data
    }

    try:
        await client.publish(channel_for(job_id), message)
        logger.debug(
            "Event published",
            extra={"job_id": job_id, "event_type": event_type}
        )
    except RetryableError as e:
        logger.error(
            "Failed to publish event",
            exc_info=e,
            extra={"job_id": job_id, "event_type": event_type}
        )
