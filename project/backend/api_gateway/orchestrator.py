"""
Composite job orchestration.

Runs the clips of one job in order, carrying the last frame of each clip into
the next as its starting image, then stitches the results. Job failures are
recorded on the job and never raised to the caller.
"""

from typing import Any, Callable, Dict, List, Optional

from api_gateway.services.event_publisher import publish_event
from api_gateway.services.queue_service import is_cancelled
from modules.clip_processor import ClipProcessor
from modules.frame_extractor import FrameExtractor
from modules.generation_client import get_speech_synthesizer, get_video_client
from modules.video_stitcher import VideoStitcher
from shared.composite_store import CompositeStore, create_composite_store
from shared.config import settings
from shared.errors import GenerationFailed, PersistenceError, PipelineError, RetryableError
from shared.logging import get_logger, set_job_id
from shared.models.composite import Clip, ClipStatus, CompositeStatus, CompositeVideo, VideoModel
from shared.redis_client import RedisClient, redis_client
from shared.storage import StorageClient, create_storage_client

logger = get_logger(__name__)

CANCELLED_MESSAGE = "Job cancelled by user"

ProcessorFactory = Callable[[VideoModel], ClipProcessor]


def status_cache_key(job_id: str) -> str:
    return f"job_status:{job_id}"


def default_processor_factory(store: CompositeStore, storage: StorageClient) -> ProcessorFactory:
    """Clip processors for a job's model family, with speech synthesis when the model needs it."""
    def factory(model: VideoModel) -> ClipProcessor:
        client = get_video_client(model)
        synthesizer = None if client.self_voicing else get_speech_synthesizer(storage)
        return ClipProcessor(store, client, synthesizer)
    return factory


class JobStopped(Exception):
    """The job reached a terminal status during the run."""


class CompositeOrchestrator:
    """
    Drive composite jobs from pending to completed or failed.

    Args:
        store: Composite job store
        processor_factory: Builds the clip processor for a job's video model
        frame_extractor: Last-frame extraction for clip continuity
        stitcher: Final concatenation
        redis: Redis client for cancellation flags, status cache and events
        resume_continuity_after_fallback: When False, a failed frame
            extraction pins the rest of the job to the actor reference image
    """

    def __init__(
        self,
        store: Optional[CompositeStore] = None,
        processor_factory: Optional[ProcessorFactory] = None,
        frame_extractor: Optional[FrameExtractor] = None,
        stitcher: Optional[VideoStitcher] = None,
        redis: Optional[RedisClient] = None,
        resume_continuity_after_fallback: Optional[bool] = None
    ):
        storage = None
        if processor_factory is None or frame_extractor is None or stitcher is None:
            storage = create_storage_client()
        self.store = store or create_composite_store()
        self.processor_factory = processor_factory or default_processor_factory(self.store, storage)
        self.frame_extractor = frame_extractor or FrameExtractor(storage=storage)
        self.stitcher = stitcher or VideoStitcher(storage=storage)
        self.redis = redis or redis_client
        if resume_continuity_after_fallback is None:
            resume_continuity_after_fallback = settings.continuity_resume_after_fallback
        self.resume_continuity_after_fallback = resume_continuity_after_fallback

    async def run(self, composite_id: str) -> CompositeVideo:
        """
        Run or resume a job.

        Clips already completed (a resumed or retried job) are not generated
        again; their last frames still feed continuity.

        Returns:
            The job as last recorded

        Raises:
            JobNotFoundError: Unknown job
        """
        set_job_id(composite_id)
        composite = await self.store.get(composite_id)
        if composite.status in (CompositeStatus.COMPLETED, CompositeStatus.FAILED):
            logger.info("Job already finished", extra={"status": composite.status.value})
            set_job_id(None)
            return composite

        logger.info(
            "Composite job started",
            extra={
                "status": composite.status.value,
                "total_clips": composite.total_clips,
                "video_model": composite.video_model.value,
            }
        )
        try:
            if composite.status == CompositeStatus.PENDING:
                composite = await self.store.transition_composite(composite, CompositeStatus.GENERATING_CLIPS)
                await self._changed(composite, "stage_update", {"stage": "generating_clips", "status": "started"})
            if composite.status == CompositeStatus.GENERATING_CLIPS:
                composite = await self._generate_clips(composite)
            composite = await self._stitch(composite)
        except JobStopped:
            pass
        except PersistenceError as e:
            logger.error("Could not record job state, stopping run", exc_info=e)
        except Exception as e:
            logger.error("Composite job crashed", exc_info=e)
            await self._fail_quietly(composite_id, f"Unexpected error: {str(e)}", "INTERNAL_ERROR")
        finally:
            set_job_id(None)

        try:
            return await self.store.get(composite_id)
        except PipelineError as e:
            logger.error("Could not read final job state", exc_info=e, extra={"job_id": composite_id})
            return composite

    async def _generate_clips(self, composite: CompositeVideo) -> CompositeVideo:
        processor = self.processor_factory(composite.video_model)
        clips: List[Clip] = sorted(composite.clips, key=lambda c: c.index)
        continuity_image: Optional[str] = None
        fallback_used = False
        completed = 0

        for position, clip in enumerate(clips):
            if await is_cancelled(composite.id, self.redis):
                await self._fail(composite, CANCELLED_MESSAGE, "CANCELLED")

            if clip.status == ClipStatus.COMPLETED:
                logger.info("Clip already completed, skipping generation", extra={"clip_index": clip.index})
            elif clip.status == ClipStatus.PENDING:
                try:
                    clip = await processor.process(clip, composite.actor, continuity_image, composite.aspect_ratio)
                except GenerationFailed as e:
                    await self._fail(composite, f"Clip {clip.index + 1} failed: {e.message}", e.code or "GENERATION_FAILED")
                await self._changed(
                    composite,
                    "clip_completed",
                    {"clip_index": clip.index, "video_url": clip.video_url, "duration": clip.duration_seconds}
                )
            else:
                # Left mid-generation (or failed) by an earlier run that stopped
                reason = clip.error_message or f"generation interrupted in status {clip.status.value}"
                if clip.status != ClipStatus.FAILED:
                    clip = await self.store.transition_clip(clip, ClipStatus.FAILED, error_message=reason)
                await self._fail(composite, f"Clip {clip.index + 1} failed: {reason}", "GENERATION_FAILED")

            completed += 1
            composite = await self.store.record_progress(composite, completed)
            await self._changed(composite, "progress", {"progress": composite.progress, "stage": "generating_clips"})

            if position == len(clips) - 1:
                continue
            if fallback_used and not self.resume_continuity_after_fallback:
                continuity_image = None
                continue
            continuity_image = await self._last_frame(clip)
            if continuity_image is None:
                fallback_used = True

        return composite

    async def _last_frame(self, clip: Clip) -> Optional[str]:
        """Last frame of a clip, or None to fall back to the actor reference."""
        try:
            return await self.frame_extractor.extract_last_frame(clip.video_url)
        except PipelineError as e:
            logger.warning(
                "Frame extraction failed, next clip uses the actor reference image",
                extra={"clip_index": clip.index, "error": e.message, "code": e.code}
            )
            return None

    async def _stitch(self, composite: CompositeVideo) -> CompositeVideo:
        if await is_cancelled(composite.id, self.redis):
            await self._fail(composite, CANCELLED_MESSAGE, "CANCELLED")

        if composite.status != CompositeStatus.STITCHING:
            composite = await self.store.transition_composite(composite, CompositeStatus.STITCHING)
        await self._changed(composite, "stage_update", {"stage": "stitching", "status": "started"})

        clips = sorted((await self.store.get(composite.id)).clips, key=lambda c: c.index)
        urls = [clip.video_url for clip in clips]
        durations = [clip.duration_seconds or settings.default_clip_duration for clip in clips]

        try:
            result = await self.stitcher.stitch(urls, durations, composite.aspect_ratio)
        except PipelineError as e:
            await self._fail(composite, f"Stitching failed: {e.message}", e.code or "COMPOSITION_FAILED")

        duration = result.duration_seconds or sum(durations)
        composite = await self.store.transition_composite(
            composite,
            CompositeStatus.COMPLETED,
            final_video_url=result.video_url,
            actual_duration=round(duration, 2),
        )
        await self._changed(
            composite,
            "completed",
            {"video_url": result.video_url, "duration": composite.actual_duration, "degraded": result.degraded}
        )
        logger.info(
            "Composite job completed",
            extra={"duration": composite.actual_duration, "degraded": result.degraded, "clip_count": len(clips)}
        )
        return composite

    async def _fail(self, composite: CompositeVideo, message: str, code: str) -> None:
        """Record the job as failed and stop the run."""
        composite = await self.store.transition_composite(composite, CompositeStatus.FAILED, error_message=message)
        await self._changed(composite, "error", {"error": message, "code": code, "retryable": False})
        logger.error("Composite job failed", extra={"error": message, "code": code})
        raise JobStopped(message)

    async def _fail_quietly(self, composite_id: str, message: str, code: str) -> None:
        try:
            composite = await self.store.get(composite_id)
            if composite.status in (CompositeStatus.GENERATING_CLIPS, CompositeStatus.STITCHING):
                await self._fail(composite, message, code)
        except JobStopped:
            pass
        except PipelineError as e:
            logger.error("Could not record job failure", exc_info=e)

    async def _changed(self, composite: CompositeVideo, event_type: str, data: Dict[str, Any]) -> None:
        """Drop the cached status and tell listeners."""
        try:
            await self.redis.delete(status_cache_key(composite.id))
        except RetryableError as e:
            logger.warning("Failed to invalidate status cache", exc_info=e)
        await publish_event(composite.id, event_type, {"status": composite.status.value, **data}, client=self.redis)
