"""
Generation client contracts.

Two families sit behind the same video contract: self-voicing models that
speak the prompt themselves, and animation models driven by a separately
synthesized audio track.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from shared.models.generation import GenerationRequest, GenerationResult, SpeechResult


class VideoGenerationClient(ABC):
    """Image (+ audio) to talking-head video."""

    name: str = "base"
    model_id: str = ""
    self_voicing: bool = False
    cost_per_second: Decimal = Decimal("0")

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate one clip.

        Raises:
            GenerationFailed: Non-retryable provider error, malformed response
                or retries exhausted
            QuotaExceededError: Provider quota exhausted
            CircuitOpenError: Provider breaker is open
        """

    def estimate_cost(self, duration_seconds: float) -> Decimal:
        """Estimated USD cost of `duration_seconds` of output video."""
        return (Decimal(str(duration_seconds)) * self.cost_per_second).quantize(Decimal("0.01"))


class SpeechSynthesizer(ABC):
    """Text to a stored audio artifact."""

    @abstractmethod
    async def synthesize(self, text: str, voice: Optional[str] = None) -> SpeechResult:
        """
        Synthesize speech and upload it.

        Returns:
            SpeechResult with the artifact URL and measured duration
        """
