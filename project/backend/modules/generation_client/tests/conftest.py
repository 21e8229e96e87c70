"""
Pytest fixtures for generation client tests.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from shared.models.composite import ActorReference
from shared.rate_limiter import TokenBucketLimiter
from shared.resilience import IntegrationGuard
from shared.retry import RetryPolicy


@pytest.fixture
def fast_guard():
    """Guard with no spacing, no call timeout and instant retries (2 attempts)."""
    return IntegrationGuard(
        "test",
        TokenBucketLimiter("test", max_concurrent=1),
        CircuitBreaker("test", CircuitBreakerConfig(call_timeout=None, volume_threshold=100)),
        RetryPolicy(max_attempts=2, base_delay=0, jitter=0),
    )


@pytest.fixture
def actor():
    return ActorReference(
        image_url="https://cdn.example.com/actors/anna.png",
        description="friendly woman in her thirties",
        gender="female",
        voice_style="friendly",
    )


@pytest.fixture
def mock_storage():
    storage = MagicMock()
    storage.upload = AsyncMock(return_value="https://cdn.example.com/artifacts/speech.mp3")
    return storage
