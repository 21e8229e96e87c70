"""
Pytest configuration and fixtures.
"""

import pytest

from shared.models.composite import ActorReference, Clip, CompositeVideo
from shared.models.segment import ClipType


@pytest.fixture
def test_env_file(tmp_path):
    """Create a temporary .env file for testing."""
    env_file = tmp_path / ".env"
    env_content = """
SUPABASE_URL=https://test.supabase.co
SUPABASE_SERVICE_KEY=test_service_key_1234567890123456789012345678901234567890
REDIS_URL=redis://localhost:6379
OPENAI_API_KEY=sk-test123456789012345678901234567890
FAL_KEY=fal_test_key_123456
ENVIRONMENT=development
LOG_LEVEL=DEBUG
VIDEO_MODEL=sadtalker
MAX_CLIP_DURATION=12
"""
    env_file.write_text(env_content)
    return env_file


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_composite():
    """Three-clip composite job in pending state."""
    clips = [
        Clip(
            id=f"clip-{i}",
            composite_id="job-1",
            index=i,
            clip_type=clip_type,
            script_content=text,
            target_duration=duration,
        )
        for i, (clip_type, text, duration) in enumerate([
            (ClipType.HOOK, "I love this product.", 4.0),
            (ClipType.TESTIMONIAL, "It changed my life.", 7.0),
            (ClipType.CTA, "Try it today!", 4.0),
        ])
    ]
    return CompositeVideo(
        id="job-1",
        script="I love this product. It changed my life. Try it today!",
        actor=ActorReference(image_url="https://cdn.example.com/actors/anna.png"),
        target_duration=15,
        total_clips=3,
        clips=clips,
    )
