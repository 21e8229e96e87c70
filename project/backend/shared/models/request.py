"""
Inbound API request models.
"""

from typing import Optional

from pydantic import BaseModel, Field

from shared.models.composite import ActorReference, AspectRatio, VideoModel


class CompositeRequest(BaseModel):
    """Body of POST /composites."""

    script: str = Field(..., min_length=1)
    actor: ActorReference
    target_duration_seconds: Optional[float] = Field(None, gt=0)
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    video_model: Optional[VideoModel] = None
