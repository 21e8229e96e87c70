"""
Composite job endpoints.

Submission, status, listing, cancellation and retry.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, status

from api_gateway.dependencies import get_caller_id, get_redis, get_store
from api_gateway.orchestrator import status_cache_key
from api_gateway.services.composite_service import (
    create_composite,
    retry_composite,
    status_payload,
    submission_payload
)
from api_gateway.services.queue_service import enqueue_job, request_cancellation
from api_gateway.services.rate_limiter import check_rate_limit
from shared.composite_store import CompositeStore
from shared.errors import InvalidStateTransition, RetryableError
from shared.logging import get_logger
from shared.models.composite import CompositeStatus
from shared.models.request import CompositeRequest
from shared.redis_client import RedisClient

logger = get_logger(__name__)

router = APIRouter()

STATUS_CACHE_TTL = 30
CANCELLABLE = (CompositeStatus.PENDING, CompositeStatus.GENERATING_CLIPS, CompositeStatus.STITCHING)
TERMINAL = (CompositeStatus.COMPLETED, CompositeStatus.FAILED)


@router.post("/composites", status_code=status.HTTP_202_ACCEPTED)
async def submit_composite(
    request: CompositeRequest,
    caller_id: str = Depends(get_caller_id),
    store: CompositeStore = Depends(get_store),
    redis: RedisClient = Depends(get_redis)
):
    """
    Submit a composite testimonial job.

    Returns:
        job_id, status, clip_count, estimated_time (seconds), estimated_cost (USD)
    """
    await check_rate_limit(caller_id, redis)
    composite = await create_composite(store, request)
    await enqueue_job(composite.id, redis)
    return submission_payload(composite)


@router.get("/composites")
async def list_composites(
    status_filter: Optional[CompositeStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    store: CompositeStore = Depends(get_store)
):
    """List recent jobs, newest first."""
    composites = await store.list_recent(limit=limit, status=status_filter)
    return {
        "jobs": [status_payload(c) for c in composites],
        "limit": limit,
    }


@router.get("/composites/{job_id}")
async def get_composite_status(
    job_id: str = Path(...),
    store: CompositeStore = Depends(get_store),
    redis: RedisClient = Depends(get_redis)
):
    """
    Get job status with per-clip progress.

    Finished jobs are served from cache; running jobs are always read from
    the store.
    """
    cache_key = status_cache_key(job_id)
    try:
        cached = await redis.get_json(cache_key)
        if cached:
            logger.debug("Job status retrieved from cache", extra={"job_id": job_id})
            return cached
    except RetryableError as e:
        logger.warning("Failed to get job status from cache", exc_info=e)

    composite = await store.get(job_id)
    payload = status_payload(composite)

    if composite.status in TERMINAL:
        try:
            await redis.set_json(cache_key, payload, ttl=STATUS_CACHE_TTL)
        except RetryableError as e:
            logger.warning("Failed to cache job status", exc_info=e)

    return payload


@router.post("/composites/{job_id}/cancel", status_code=status.HTTP_202_ACCEPTED)
async def cancel_composite(
    job_id: str = Path(...),
    store: CompositeStore = Depends(get_store),
    redis: RedisClient = Depends(get_redis)
):
    """
    Request cancellation of a pending or running job.

    The job stops at its next clip boundary and is recorded as failed.
    """
    composite = await store.get(job_id)
    if composite.status not in CANCELLABLE:
        raise InvalidStateTransition(composite.status.value, "cancelled", "composite")

    await request_cancellation(job_id, redis)

    return {
        "job_id": job_id,
        "status": composite.status.value,
        "message": "Cancellation requested"
    }


@router.post("/composites/{job_id}/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_failed_composite(
    job_id: str = Path(...),
    caller_id: str = Depends(get_caller_id),
    store: CompositeStore = Depends(get_store),
    redis: RedisClient = Depends(get_redis)
):
    """
    Retry a failed job as a new job.

    Completed clips are reused; the rest are generated again.
    """
    await check_rate_limit(caller_id, redis)
    composite = await retry_composite(store, job_id)
    await enqueue_job(composite.id, redis)
    return submission_payload(composite)
