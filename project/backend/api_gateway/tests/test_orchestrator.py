"""
Tests for the composite job orchestrator.
"""

import json

import pytest
from unittest.mock import AsyncMock

from api_gateway.orchestrator import CANCELLED_MESSAGE, CompositeOrchestrator
from modules.clip_processor import ClipProcessor
from shared.errors import CompositionError, GenerationFailed, PersistenceError, QuotaExceededError
from shared.models.composite import AspectRatio, ClipStatus, CompositeStatus

ACTOR_IMAGE = "https://cdn.example.com/actors/anna.png"


def _orchestrator(store, video_client, frame_extractor, stitcher, redis, **kwargs):
    return CompositeOrchestrator(
        store=store,
        processor_factory=lambda model: ClipProcessor(store, video_client),
        frame_extractor=frame_extractor,
        stitcher=stitcher,
        redis=redis,
        **kwargs
    )


def _events(mock_redis_client):
    """(channel, event_type, data) for every published event."""
    events = []
    for call in mock_redis_client.publish.call_args_list:
        channel, message = call[0]
        events.append((channel, message["event_type"], message["data"]))
    return events


def _progress_writes(store):
    return [w["current_clip_index"] for w in store.writes if "current_clip_index" in w]


class TestHappyPath:
    """Test a job that completes."""

    @pytest.mark.asyncio
    async def test_three_clips_with_frame_continuity(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.COMPLETED
        assert result.final_video_url == "https://cdn.example.com/final.mp4"
        assert result.actual_duration == 15.04
        assert result.completed_at is not None
        assert all(clip.status == ClipStatus.COMPLETED for clip in result.clips)

        assert video_client.continuity_images == [
            ACTOR_IMAGE,
            "https://fal.media/clip1.mp4.last.png",
            "https://fal.media/clip2.mp4.last.png",
        ]
        # No frame is taken from the final clip
        assert frame_extractor.calls == ["https://fal.media/clip1.mp4", "https://fal.media/clip2.mp4"]

        stitcher.stitch.assert_awaited_once_with(
            ["https://fal.media/clip1.mp4", "https://fal.media/clip2.mp4", "https://fal.media/clip3.mp4"],
            [4.0, 7.0, 4.0],
            AspectRatio.PORTRAIT,
        )

    @pytest.mark.asyncio
    async def test_progress_is_monotonic(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        await orchestrator.run("job-1")

        assert _progress_writes(store) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_events_and_cache_invalidation(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        await orchestrator.run("job-1")

        events = _events(mock_redis_client)
        assert {channel for channel, _, _ in events} == {"job_events:job-1"}
        types = [event_type for _, event_type, _ in events]
        assert types.count("clip_completed") == 3
        assert [data["progress"] for _, t, data in events if t == "progress"] == [27, 53, 80]
        assert types[-1] == "completed"
        assert events[-1][2]["video_url"] == "https://cdn.example.com/final.mp4"
        mock_redis_client.delete.assert_any_await("job_status:job-1")

        # Event payloads are JSON-serializable
        json.dumps([data for _, _, data in events])

    @pytest.mark.asyncio
    async def test_missing_stitched_duration_uses_sum(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        from modules.video_stitcher import StitchResult

        stitcher.stitch = AsyncMock(return_value=StitchResult(
            video_url="https://fal.media/clip1.mp4", duration_seconds=None, degraded=True
        ))
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.COMPLETED
        assert result.actual_duration == 15.0
        assert _events(mock_redis_client)[-1][2]["degraded"] is True

    @pytest.mark.asyncio
    async def test_finished_job_is_left_alone(
        self, store, composite_factory, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        await store.create(composite_factory(status=CompositeStatus.FAILED, error_message="earlier failure"))
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert video_client.requests == []
        assert store.writes == []


class TestClipFailure:
    """Test jobs whose clips fail."""

    @pytest.mark.asyncio
    async def test_first_clip_failure_stops_job(
        self, store, composite, client_factory, frame_extractor, stitcher, mock_redis_client
    ):
        video_client = client_factory([GenerationFailed("image rejected by provider", http_status=400)])
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message == "Clip 1 failed: image rejected by provider"
        assert [c.status for c in result.clips] == [ClipStatus.FAILED, ClipStatus.PENDING, ClipStatus.PENDING]
        assert result.clips[0].error_message == "image rejected by provider"
        assert result.current_clip_index == 0
        assert len(video_client.requests) == 1
        stitcher.stitch.assert_not_called()

        _, event_type, data = _events(mock_redis_client)[-1]
        assert event_type == "error"
        assert data["error"] == "Clip 1 failed: image rejected by provider"
        assert data["retryable"] is False

    @pytest.mark.asyncio
    async def test_middle_clip_quota_failure(
        self, store, composite, client_factory, frame_extractor, stitcher, mock_redis_client
    ):
        video_client = client_factory([None, QuotaExceededError("fal quota exhausted")])
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message == "Clip 2 failed: fal quota exhausted"
        assert [c.status for c in result.clips] == [ClipStatus.COMPLETED, ClipStatus.FAILED, ClipStatus.PENDING]
        assert result.current_clip_index == 1

    @pytest.mark.asyncio
    async def test_stitching_failure(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        stitcher.stitch = AsyncMock(side_effect=CompositionError(
            "Video stitching failed: concatenation failed with exit code 1", code="MEDIA_TOOL_FAILED"
        ))
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message.startswith("Stitching failed: ")
        assert all(c.status == ClipStatus.COMPLETED for c in result.clips)
        assert result.final_video_url is None

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        stitcher.stitch = AsyncMock(side_effect=RuntimeError("disk full"))
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message == "Unexpected error: disk full"

    @pytest.mark.asyncio
    async def test_persistence_error_ends_run(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        await store.create(composite)
        store.update_clip = AsyncMock(side_effect=PersistenceError("database unavailable"))
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.GENERATING_CLIPS
        assert video_client.requests == []
        stitcher.stitch.assert_not_called()


class TestContinuityFallback:
    """Test behavior when a last frame cannot be extracted."""

    @pytest.mark.asyncio
    async def test_failed_extraction_falls_back_to_actor_image(
        self, store, composite, video_client, extractor_factory, stitcher, mock_redis_client
    ):
        frame_extractor = extractor_factory(failing={"https://fal.media/clip2.mp4"})
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.COMPLETED
        assert video_client.continuity_images == [
            ACTOR_IMAGE,
            "https://fal.media/clip1.mp4.last.png",
            ACTOR_IMAGE,
        ]

    @pytest.mark.asyncio
    async def test_continuity_resumes_after_fallback(
        self, store, composite_factory, video_client, extractor_factory, stitcher, mock_redis_client
    ):
        frame_extractor = extractor_factory(failing={"https://fal.media/clip1.mp4"})
        await store.create(composite_factory(clip_count=4))
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        await orchestrator.run("job-1")

        assert video_client.continuity_images == [
            ACTOR_IMAGE,
            ACTOR_IMAGE,
            "https://fal.media/clip2.mp4.last.png",
            "https://fal.media/clip3.mp4.last.png",
        ]

    @pytest.mark.asyncio
    async def test_continuity_stays_off_after_fallback(
        self, store, composite_factory, video_client, extractor_factory, stitcher, mock_redis_client
    ):
        frame_extractor = extractor_factory(failing={"https://fal.media/clip1.mp4"})
        await store.create(composite_factory(clip_count=4))
        orchestrator = _orchestrator(
            store, video_client, frame_extractor, stitcher, mock_redis_client,
            resume_continuity_after_fallback=False
        )

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.COMPLETED
        assert video_client.continuity_images == [ACTOR_IMAGE] * 4
        assert frame_extractor.calls == ["https://fal.media/clip1.mp4"]


class TestCancellation:
    """Test cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_first_clip(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        mock_redis_client.get = AsyncMock(return_value="1")
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message == CANCELLED_MESSAGE
        assert video_client.requests == []
        mock_redis_client.get.assert_awaited_with("job_cancel:job-1")

    @pytest.mark.asyncio
    async def test_cancelled_between_clips(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        mock_redis_client.get = AsyncMock(side_effect=[None, "1"])
        await store.create(composite)
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message == CANCELLED_MESSAGE
        assert [c.status for c in result.clips] == [ClipStatus.COMPLETED, ClipStatus.PENDING, ClipStatus.PENDING]
        assert len(video_client.requests) == 1


class TestResumption:
    """Test jobs picked up again after an interruption or retry."""

    @pytest.mark.asyncio
    async def test_completed_clips_are_not_regenerated(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        clips = list(composite.clips)
        clips[0] = clips[0].model_copy(update={
            "status": ClipStatus.COMPLETED,
            "video_url": "https://fal.media/earlier.mp4",
            "duration_seconds": 4.0,
        })
        await store.create(composite.model_copy(update={
            "status": CompositeStatus.GENERATING_CLIPS,
            "current_clip_index": 1,
            "clips": clips,
        }))
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.COMPLETED
        assert len(video_client.requests) == 2
        assert video_client.continuity_images == [
            "https://fal.media/earlier.mp4.last.png",
            "https://fal.media/clip1.mp4.last.png",
        ]
        urls = stitcher.stitch.call_args[0][0]
        assert urls == ["https://fal.media/earlier.mp4", "https://fal.media/clip1.mp4", "https://fal.media/clip2.mp4"]
        assert _progress_writes(store) == [2, 3]

    @pytest.mark.asyncio
    async def test_clip_left_mid_generation_fails_job(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        clips = list(composite.clips)
        clips[0] = clips[0].model_copy(update={"status": ClipStatus.GENERATING_VIDEO})
        await store.create(composite.model_copy(update={
            "status": CompositeStatus.GENERATING_CLIPS,
            "clips": clips,
        }))
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.FAILED
        assert result.error_message.startswith("Clip 1 failed: generation interrupted")
        assert video_client.requests == []
        assert result.clips[0].status == ClipStatus.FAILED
        assert result.clips[0].error_message == "generation interrupted in status generating_video"
        assert result.clips[0].progress == 0

    @pytest.mark.asyncio
    async def test_resume_in_stitching(
        self, store, composite, video_client, frame_extractor, stitcher, mock_redis_client
    ):
        clips = [
            clip.model_copy(update={
                "status": ClipStatus.COMPLETED,
                "video_url": f"https://fal.media/done{clip.index}.mp4",
                "duration_seconds": None,
            })
            for clip in composite.clips
        ]
        await store.create(composite.model_copy(update={
            "status": CompositeStatus.STITCHING,
            "current_clip_index": 3,
            "clips": clips,
        }))
        orchestrator = _orchestrator(store, video_client, frame_extractor, stitcher, mock_redis_client)

        result = await orchestrator.run("job-1")

        assert result.status == CompositeStatus.COMPLETED
        assert video_client.requests == []
        # Unknown clip lengths are passed as the default duration
        assert stitcher.stitch.call_args[0][1] == [8.0, 8.0, 8.0]
