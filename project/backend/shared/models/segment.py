"""
Script segment models.
"""

from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class ClipType(str, Enum):
    """Role a segment plays in the testimonial."""
    HOOK = "hook"
    TESTIMONIAL = "testimonial"
    CTA = "cta"


class Segment(BaseModel):
    """One planned spoken unit of the script."""

    model_config = ConfigDict(frozen=True)

    type: ClipType
    content: str
    order: int = Field(..., ge=0)
    estimated_duration: float = Field(..., ge=0, description="Speaking time: words / words-per-second")
    target_duration: float = Field(..., ge=0, description="Planned clip length in seconds")

    @property
    def word_count(self) -> int:
        return len(self.content.split())


class SegmentationResult(BaseModel):
    """Ordered segments produced for one script."""

    model_config = ConfigDict(frozen=True)

    segments: List[Segment]
    strategy: str

    @property
    def clip_count(self) -> int:
        return len(self.segments)

    @property
    def estimated_duration(self) -> float:
        """Total speaking time across all segments."""
        return sum(s.estimated_duration for s in self.segments)

    @property
    def planned_duration(self) -> float:
        """Total planned clip length across all segments."""
        return sum(s.target_duration for s in self.segments)
