"""
Veo 3.1 Fast image-to-video client.

Self-voicing: the model speaks the quoted script itself, with lip-sync, so
no separate speech track is needed.
"""

from decimal import Decimal
from typing import Any, Dict, Optional

from modules.generation_client.base import VideoGenerationClient
from modules.generation_client.fal import FalTransport, video_url_from
from shared.logging import get_logger
from shared.models.composite import AspectRatio
from shared.models.generation import GenerationRequest, GenerationResult

logger = get_logger("generation_client")

VEO3_MODEL = "fal-ai/veo3.1/fast/image-to-video"

# Output lengths the model accepts
VEO3_DURATIONS = (4, 6, 8)

# Aspect ratios the model accepts; anything else is left to the model
_VEO3_ASPECT_RATIOS = {AspectRatio.PORTRAIT: "9:16", AspectRatio.LANDSCAPE: "16:9"}


def select_veo_duration(seconds: float) -> int:
    """Smallest supported length that fits `seconds` (<=4 -> 4, <=6 -> 6, else 8)."""
    for duration in VEO3_DURATIONS:
        if seconds <= duration:
            return duration
    return VEO3_DURATIONS[-1]


class Veo3Client(VideoGenerationClient):
    """Veo 3.1 Fast through fal.ai."""

    name = "veo3"
    model_id = VEO3_MODEL
    self_voicing = True
    cost_per_second = Decimal("0.15")  # With generated audio

    def __init__(self, transport: Optional[FalTransport] = None, resolution: str = "720p"):
        self.transport = transport or FalTransport()
        self.resolution = resolution

    def build_arguments(self, request: GenerationRequest) -> Dict[str, Any]:
        return {
            "prompt": request.prompt_text,
            "image_url": request.continuity_image,
            "aspect_ratio": _VEO3_ASPECT_RATIOS.get(request.aspect_ratio, "auto"),
            "duration": f"{select_veo_duration(request.duration_hint)}s",
            "resolution": self.resolution,
            "generate_audio": True,
            "auto_fix": True,
        }

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        arguments = self.build_arguments(request)
        output, request_id = await self.transport.run(self.model_id, arguments)
        video_url = video_url_from(output, self.model_id)
        # The model returns exactly the requested length
        duration = float(select_veo_duration(request.duration_hint))
        logger.info(
            "Veo3 clip generated",
            extra={"request_id": request_id, "duration": duration}
        )
        return GenerationResult(video_url=video_url, duration_seconds=duration, provider_request_id=request_id)
