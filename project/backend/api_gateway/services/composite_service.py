"""
Composite job service.

Creating jobs from requests, retrying failed jobs, estimates and the status
payload returned by the API.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from modules.generation_client import get_video_client
from modules.script_segmenter import segment_script
from shared.composite_store import CompositeStore
from shared.config import settings
from shared.errors import InvalidStateTransition
from shared.logging import get_logger
from shared.models.composite import Clip, ClipStatus, CompositeStatus, CompositeVideo, VideoModel
from shared.models.request import CompositeRequest
from shared.models.segment import SegmentationResult
from shared.validation import validate_image_url, validate_script, validate_target_duration

logger = get_logger(__name__)

ESTIMATED_SECONDS_PER_CLIP = 60

# Fields of a completed clip carried into a retry job
_CARRIED_FIELDS = ("status", "video_url", "audio_url", "duration_seconds", "provider_request_id")


def new_id() -> str:
    return str(uuid.uuid4())


def build_composite(
    request: CompositeRequest,
    segmentation: SegmentationResult,
    composite_id: Optional[str] = None
) -> CompositeVideo:
    """Composite job with one pending clip per segment."""
    composite_id = composite_id or new_id()
    clips = [
        Clip(
            id=new_id(),
            composite_id=composite_id,
            index=segment.order,
            clip_type=segment.type,
            script_content=segment.content,
            target_duration=segment.target_duration,
        )
        for segment in segmentation.segments
    ]
    return CompositeVideo(
        id=composite_id,
        script=request.script,
        actor=request.actor,
        aspect_ratio=request.aspect_ratio,
        video_model=request.video_model or VideoModel(settings.video_model),
        target_duration=request.target_duration_seconds or settings.default_target_duration,
        total_clips=len(clips),
        clips=clips,
    )


async def create_composite(store: CompositeStore, request: CompositeRequest) -> CompositeVideo:
    """
    Validate and segment a request, then persist the new job.

    Raises:
        ValidationError: Invalid script, image URL or duration, or a script
            that cannot be segmented
    """
    script = validate_script(request.script)
    validate_image_url(str(request.actor.image_url))
    target = validate_target_duration(request.target_duration_seconds or settings.default_target_duration)

    segmentation = segment_script(script, target, settings.max_clip_duration)
    request = request.model_copy(update={"script": script, "target_duration_seconds": target})
    composite = await store.create(build_composite(request, segmentation))

    logger.info(
        "Composite job created",
        extra={
            "job_id": composite.id,
            "clip_count": composite.total_clips,
            "video_model": composite.video_model.value,
            "strategy": segmentation.strategy,
        }
    )
    return composite


async def retry_composite(store: CompositeStore, composite_id: str) -> CompositeVideo:
    """
    Create a new job from a failed one.

    Completed clips are carried over with their artifacts; every other clip
    starts again from pending.

    Raises:
        JobNotFoundError: Unknown job
        InvalidStateTransition: The job has not failed
    """
    original = await store.get(composite_id)
    if original.status != CompositeStatus.FAILED:
        raise InvalidStateTransition(original.status.value, "retry", "composite")

    retry_id = new_id()
    clips: List[Clip] = []
    for clip in original.clips:
        carried = {}
        if clip.status == ClipStatus.COMPLETED:
            carried = {name: getattr(clip, name) for name in _CARRIED_FIELDS}
        clips.append(Clip(
            id=new_id(),
            composite_id=retry_id,
            index=clip.index,
            clip_type=clip.clip_type,
            script_content=clip.script_content,
            target_duration=clip.target_duration,
            **carried,
        ))

    completed = sum(1 for clip in clips if clip.status == ClipStatus.COMPLETED)
    composite = await store.create(CompositeVideo(
        id=retry_id,
        script=original.script,
        actor=original.actor,
        aspect_ratio=original.aspect_ratio,
        video_model=original.video_model,
        target_duration=original.target_duration,
        total_clips=original.total_clips,
        current_clip_index=completed,
        retry_of=original.id,
        clips=clips,
    ))
    logger.info(
        "Retry job created",
        extra={"job_id": retry_id, "retry_of": original.id, "carried_clips": completed}
    )
    return composite


def estimate(composite: CompositeVideo) -> Dict[str, Any]:
    """Estimated wall-clock seconds and USD cost for the clips still to generate."""
    client = get_video_client(composite.video_model)
    pending = [clip for clip in composite.clips if clip.status != ClipStatus.COMPLETED]
    cost = sum((client.estimate_cost(clip.target_duration) for clip in pending), Decimal("0"))
    return {
        "estimated_time": len(pending) * ESTIMATED_SECONDS_PER_CLIP,
        "estimated_cost": float(cost),
    }


def submission_payload(composite: CompositeVideo) -> Dict[str, Any]:
    """Body of the 202 response for a new or retried job."""
    payload = {
        "job_id": composite.id,
        "status": composite.status.value,
        "clip_count": composite.total_clips,
        **estimate(composite),
    }
    if composite.retry_of:
        payload["retry_of"] = composite.retry_of
    return payload


def status_payload(composite: CompositeVideo) -> Dict[str, Any]:
    """JSON-ready job status."""
    return {
        "job_id": composite.id,
        "status": composite.status.value,
        "current_clip_index": composite.current_clip_index,
        "total_clips": composite.total_clips,
        "progress": composite.progress,
        "video_model": composite.video_model.value,
        "aspect_ratio": composite.aspect_ratio.value,
        "clips": [
            {
                "index": clip.index,
                "clip_type": clip.clip_type.value,
                "status": clip.status.value,
                "progress": clip.progress,
                "video_url": clip.video_url,
                "duration_seconds": clip.duration_seconds,
                "error_message": clip.error_message,
            }
            for clip in composite.clips
        ],
        "final_video_url": composite.final_video_url,
        "actual_duration": composite.actual_duration,
        "error_message": composite.error_message,
        "retry_of": composite.retry_of,
        "created_at": composite.created_at.isoformat(),
        "completed_at": composite.completed_at.isoformat() if composite.completed_at else None,
    }
