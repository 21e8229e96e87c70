"""
Rate limiting service.

Redis-based sliding window limit on job submissions per caller.
"""

import time
from typing import Optional

from shared.config import settings
from shared.errors import RateLimitError
from shared.logging import get_logger
from shared.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

WINDOW_SECONDS = 3600


async def check_rate_limit(caller_id: str, client: Optional[RedisClient] = None) -> None:
    """
    Check and record one job submission for a caller.

    Uses a Redis sorted set of submission timestamps over the last hour.

    Args:
        caller_id: Caller identity
        client: Redis client (module singleton when omitted)

    Raises:
        RateLimitError: If the caller has reached settings.rate_limit_jobs_per_hour
    """
    client = client or redis_client
    limit = settings.rate_limit_jobs_per_hour
    key = f"rate_limit:{caller_id}"
    now = time.time()
    window_start = now - WINDOW_SECONDS

    try:
        # Remove entries older than the window
        await client.client.zremrangebyscore(key, 0, window_start)

        count = await client.client.zcard(key)

        if count >= limit:
            oldest_entries = await client.client.zrange(key, 0, 0, withscores=True)
            if oldest_entries:
                oldest_time = float(oldest_entries[0][1])
                retry_after = max(1, int(WINDOW_SECONDS - (now - oldest_time)))
            else:
                retry_after = WINDOW_SECONDS

            logger.warning(
                "Rate limit exceeded",
                extra={"caller_id": caller_id, "count": count, "retry_after": retry_after}
            )

            raise RateLimitError(
                f"Rate limit exceeded: {limit} jobs per hour",
                retry_after=retry_after,
                code="RATE_LIMIT_EXCEEDED"
            )

        await client.client.zadd(key, {f"{now:.6f}": now})
        await client.client.expire(key, WINDOW_SECONDS)

        logger.debug(
            "Rate limit check passed",
            extra={"caller_id": caller_id, "count": count + 1}
        )

    except RateLimitError:
        raise
    except Exception as e:
        logger.error("Rate limit check failed", exc_info=e, extra={"caller_id": caller_id})

        if settings.rate_limit_fail_closed:
            logger.warning(
                "Rate limiter failed in fail-closed mode, blocking request",
                extra={"caller_id": caller_id}
            )
            raise RateLimitError(
                "Rate limit service unavailable",
                retry_after=60,
                code="RATE_LIMIT_SERVICE_UNAVAILABLE"
            ) from e

        # Fail-open: allow the request through
        logger.warning(
            "Rate limiter failed in fail-open mode, allowing request",
            extra={"caller_id": caller_id}
        )
