"""
Pytest configuration and fixtures for API Gateway tests.
"""

from decimal import Decimal
from typing import List, Optional

import pytest
from unittest.mock import AsyncMock, MagicMock

from modules.clip_processor import ClipProcessor
from modules.generation_client.base import VideoGenerationClient
from modules.video_stitcher import StitchResult
from shared.composite_store import InMemoryCompositeStore
from shared.errors import ArtifactDownloadError
from shared.models.composite import ActorReference, Clip, CompositeVideo
from shared.models.generation import GenerationRequest, GenerationResult
from shared.models.segment import ClipType

ACTOR_IMAGE = "https://cdn.example.com/actors/anna.png"


@pytest.fixture
def mock_redis_client():
    """Redis client double: no cancellation flags, empty cache, empty queue."""
    mock_client = MagicMock()
    mock_client.queue_prefix = "composite:queue:"
    mock_client.get = AsyncMock(return_value=None)
    mock_client.set = AsyncMock(return_value=True)
    mock_client.delete = AsyncMock(return_value=True)
    mock_client.get_json = AsyncMock(return_value=None)
    mock_client.set_json = AsyncMock(return_value=True)
    mock_client.publish = AsyncMock(return_value=1)
    mock_client.push = AsyncMock(return_value=1)
    mock_client.pop = AsyncMock(return_value=None)
    mock_client.queue_length = AsyncMock(return_value=0)
    mock_client.health_check = AsyncMock(return_value=True)
    mock_client.close = AsyncMock()

    # Raw redis.asyncio client
    raw = MagicMock()
    raw.zremrangebyscore = AsyncMock(return_value=0)
    raw.zcard = AsyncMock(return_value=0)
    raw.zrange = AsyncMock(return_value=[])
    raw.zadd = AsyncMock(return_value=1)
    raw.expire = AsyncMock(return_value=True)
    raw.sadd = AsyncMock(return_value=1)
    raw.srem = AsyncMock(return_value=1)
    raw.smembers = AsyncMock(return_value=set())
    mock_client.client = raw

    return mock_client


@pytest.fixture
def actor():
    return ActorReference(image_url=ACTOR_IMAGE, gender="female", voice_style="friendly")


def make_composite(actor, job_id="job-1", clip_count=3, **overrides):
    scripts = [
        (ClipType.HOOK, "I love this product.", 4.0),
        (ClipType.TESTIMONIAL, "It changed my mornings completely.", 7.0),
        (ClipType.CTA, "Try it today!", 4.0),
    ]
    scripts = (scripts * ((clip_count // 3) + 1))[:clip_count]
    clips = [
        Clip(
            id=f"{job_id}-clip-{i}",
            composite_id=job_id,
            index=i,
            clip_type=clip_type,
            script_content=text,
            target_duration=duration,
        )
        for i, (clip_type, text, duration) in enumerate(scripts)
    ]
    values = {
        "id": job_id,
        "script": " ".join(text for _, text, _ in scripts),
        "actor": actor,
        "target_duration": 15,
        "total_clips": clip_count,
        "clips": clips,
    }
    values.update(overrides)
    return CompositeVideo(**values)


@pytest.fixture
def composite(actor):
    return make_composite(actor)


@pytest.fixture
def store():
    return InMemoryCompositeStore()


class FakeVideoClient(VideoGenerationClient):
    """Self-voicing client returning queued outcomes in call order."""

    name = "fake-veo"
    model_id = "fake/veo"
    self_voicing = True
    cost_per_second = Decimal("0.15")

    def __init__(self, outcomes: Optional[List] = None):
        self.outcomes = list(outcomes or [])
        self.requests: List[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        n = len(self.requests)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or GenerationResult(
            video_url=f"https://fal.media/clip{n}.mp4",
            duration_seconds=float(request.duration_hint),
            provider_request_id=f"req-{n}",
        )

    @property
    def continuity_images(self) -> List[str]:
        return [r.continuity_image for r in self.requests]


class FakeFrameExtractor:
    """Returns "<video>.last.png"; URLs in `failing` raise a download error."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls: List[str] = []

    async def extract_last_frame(self, video_url: str) -> str:
        self.calls.append(video_url)
        if video_url in self.failing:
            raise ArtifactDownloadError(f"Download of {video_url} returned 404", code="DOWNLOAD_FAILED")
        return f"{video_url}.last.png"


@pytest.fixture
def video_client():
    return FakeVideoClient()


@pytest.fixture
def frame_extractor():
    return FakeFrameExtractor()


@pytest.fixture
def stitcher():
    mock_stitcher = MagicMock()
    mock_stitcher.stitch = AsyncMock(return_value=StitchResult(
        video_url="https://cdn.example.com/final.mp4", duration_seconds=15.04
    ))
    return mock_stitcher


@pytest.fixture
def processor_factory(store, video_client):
    return lambda model: ClipProcessor(store, video_client)


@pytest.fixture
def composite_factory(actor):
    """Build composites with the default actor: composite_factory(job_id=..., clip_count=..., **fields)."""
    return lambda **kwargs: make_composite(actor, **kwargs)


@pytest.fixture
def extractor_factory():
    """Frame extractors whose listed video URLs fail."""
    return lambda failing=(): FakeFrameExtractor(failing)


@pytest.fixture
def client_factory():
    """Video clients with queued outcomes."""
    return lambda outcomes=None: FakeVideoClient(outcomes)
