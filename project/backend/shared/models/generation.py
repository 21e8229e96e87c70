"""
Generation client request/response models.
"""

from typing import Optional

from pydantic import BaseModel, Field

from shared.models.composite import AspectRatio


class GenerationRequest(BaseModel):
    """Input to one video generation call."""

    continuity_image: str = Field(..., min_length=1, description="Image that anchors the clip's first frame")
    prompt_text: str = Field(..., min_length=1)
    duration_hint: float = Field(..., gt=0)
    audio_url: Optional[str] = None
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT


class GenerationResult(BaseModel):
    """Output of one video generation call."""

    video_url: str
    duration_seconds: Optional[float] = None
    provider_request_id: Optional[str] = None


class SpeechResult(BaseModel):
    """Output of one speech synthesis call."""

    audio_url: str
    duration_seconds: float
    voice: str
    truncated: bool = False
