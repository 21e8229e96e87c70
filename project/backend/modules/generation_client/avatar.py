"""
Audio-driven animation clients (SadTalker, Live Avatar).

Both animate the continuity image to a previously synthesized audio track.
"""

import math
from abc import abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

from modules.generation_client.base import VideoGenerationClient
from modules.generation_client.fal import FalTransport, video_url_from
from shared.errors import GenerationFailed
from shared.logging import get_logger
from shared.models.generation import GenerationRequest, GenerationResult

logger = get_logger("generation_client")

SADTALKER_MODEL = "fal-ai/sadtalker"
LIVE_AVATAR_MODEL = "fal-ai/live-avatar"

# Live Avatar renders ~3 second chunks
LIVE_AVATAR_CHUNK_SECONDS = 3


def live_avatar_chunks(audio_seconds: float) -> int:
    """Chunks needed to cover the audio, plus one for margin."""
    return math.ceil(audio_seconds / LIVE_AVATAR_CHUNK_SECONDS) + 1


class _AudioDrivenClient(VideoGenerationClient):
    self_voicing = False

    def __init__(self, transport: Optional[FalTransport] = None):
        self.transport = transport or FalTransport()

    @abstractmethod
    def build_arguments(self, request: GenerationRequest) -> Dict[str, Any]:
        """Model input for one request."""

    def duration_from(self, output: Dict[str, Any]) -> Optional[float]:
        return None

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        if not request.audio_url:
            raise GenerationFailed(f"{self.name} requires an audio track", code="MISSING_AUDIO")
        output, request_id = await self.transport.run(self.model_id, self.build_arguments(request))
        video_url = video_url_from(output, self.model_id)
        duration = self.duration_from(output)
        logger.info(
            "Animated clip generated",
            extra={"model": self.model_id, "request_id": request_id, "duration": duration}
        )
        return GenerationResult(video_url=video_url, duration_seconds=duration, provider_request_id=request_id)


class SadTalkerClient(_AudioDrivenClient):
    """SadTalker: animates the face region of a still image."""

    name = "sadtalker"
    model_id = SADTALKER_MODEL

    def build_arguments(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "source_image_url": request.continuity_image,
            "driven_audio_url": request.audio_url,
            "face_model_resolution": "512",
            "expression_scale": 1,
            "preprocess": "crop",
            "still_mode": False,
        }


class LiveAvatarClient(_AudioDrivenClient):
    """Live Avatar: full talking avatar with natural head and body movement."""

    name = "live_avatar"
    model_id = LIVE_AVATAR_MODEL
    cost_per_second = Decimal("0.01")

    def build_arguments(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "image_url": request.continuity_image,
            "audio_url": request.audio_url,
            "prompt": request.prompt_text,
            "num_clips": live_avatar_chunks(request.duration_hint),
            "frames_per_clip": 48,
            "guidance_scale": 0,
            "enable_safety_checker": True,
            "acceleration": "regular",
        }

    def duration_from(self, output: Dict[str, Any]) -> Optional[float]:
        duration = (output.get("video") or {}).get("duration")
        return float(duration) if duration else None
