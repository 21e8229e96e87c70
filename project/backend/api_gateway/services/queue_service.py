"""
Queue service.

Composite job queue on a Redis list, the set of jobs a worker has taken, and
the cooperative cancellation flags.
"""

from typing import List, Optional

from shared.errors import RetryableError
from shared.logging import get_logger
from shared.redis_client import RedisClient, redis_client

logger = get_logger(__name__)

QUEUE_NAME = "composite_generation"
CANCEL_FLAG_TTL = 3600  # 1 hour


def _payload(composite_id: str) -> dict:
    return {"composite_id": composite_id}


def cancel_key(composite_id: str) -> str:
    return f"job_cancel:{composite_id}"


def _processing_key(client: RedisClient) -> str:
    return f"{client.queue_prefix}{QUEUE_NAME}:processing"


async def enqueue_job(composite_id: str, client: Optional[RedisClient] = None) -> None:
    """
    Enqueue a composite job for the worker.

    Raises:
        RetryableError: If Redis is unreachable
    """
    client = client or redis_client
    try:
        await client.push(QUEUE_NAME, _payload(composite_id))
        logger.info("Job enqueued", extra={"job_id": composite_id})
    except RetryableError as e:
        logger.error("Failed to enqueue job", exc_info=e, extra={"job_id": composite_id})
        raise


async def get_queue_size(client: Optional[RedisClient] = None) -> int:
    """
    Get the number of queued jobs.

    Raises:
        RetryableError: If Redis is unreachable
    """
    client = client or redis_client
    return await client.queue_length(QUEUE_NAME)


async def mark_processing(composite_id: str, client: Optional[RedisClient] = None) -> None:
    """Record that a worker has taken a job."""
    client = client or redis_client
    await client.client.sadd(_processing_key(client), composite_id)


async def unmark_processing(composite_id: str, client: Optional[RedisClient] = None) -> None:
    client = client or redis_client
    await client.client.srem(_processing_key(client), composite_id)


async def requeue_interrupted(client: Optional[RedisClient] = None) -> List[str]:
    """
    Put jobs taken by a worker that stopped mid-run back on the queue.

    Their progress is kept in the store, so the next run resumes them.

    Returns:
        IDs of the requeued jobs
    """
    client = client or redis_client
    key = _processing_key(client)
    members = await client.client.smembers(key)
    requeued = []
    for member in members:
        composite_id = member.decode("utf-8") if isinstance(member, bytes) else member
        await client.push(QUEUE_NAME, _payload(composite_id))
        await client.client.srem(key, member)
        requeued.append(composite_id)
    if requeued:
        logger.warning("Requeued interrupted jobs", extra={"job_ids": requeued})
    return requeued


async def request_cancellation(composite_id: str, client: Optional[RedisClient] = None) -> None:
    """Set the job's cancellation flag; the orchestrator stops at its next clip boundary."""
    client = client or redis_client
    await client.set(cancel_key(composite_id), "1", ex=CANCEL_FLAG_TTL)
    logger.info("Cancellation requested", extra={"job_id": composite_id})


async def is_cancelled(composite_id: str, client: Optional[RedisClient] = None) -> bool:
    """
    Check the job's cancellation flag.

    Returns False when Redis cannot be read, so an outage does not cancel jobs.
    """
    client = client or redis_client
    try:
        return await client.get(cancel_key(composite_id)) is not None
    except RetryableError as e:
        logger.warning("Failed to check cancellation flag", exc_info=e, extra={"job_id": composite_id})
        return False
