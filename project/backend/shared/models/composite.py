"""
Composite video and clip models.

Status enums for both state machines and the functions that decide which
status changes are allowed.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, HttpUrl

from shared.errors import InvalidStateTransition
from shared.models.segment import ClipType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClipStatus(str, Enum):
    PENDING = "pending"
    GENERATING_AUDIO = "generating_audio"
    GENERATING_VIDEO = "generating_video"
    COMPLETED = "completed"
    FAILED = "failed"


class CompositeStatus(str, Enum):
    PENDING = "pending"
    GENERATING_CLIPS = "generating_clips"
    STITCHING = "stitching"
    COMPLETED = "completed"
    FAILED = "failed"


class AspectRatio(str, Enum):
    PORTRAIT = "9:16"
    LANDSCAPE = "16:9"
    SQUARE = "1:1"
    VERTICAL = "4:5"

    @property
    def dimensions(self) -> Tuple[int, int]:
        """Target (width, height) for the stitched output."""
        return _DIMENSIONS[self]


_DIMENSIONS = {
    AspectRatio.PORTRAIT: (720, 1280),
    AspectRatio.LANDSCAPE: (1280, 720),
    AspectRatio.SQUARE: (720, 720),
    AspectRatio.VERTICAL: (720, 900),
}


class VideoModel(str, Enum):
    """Video generation model family used for every clip of a job."""
    VEO3 = "veo3"
    LIVE_AVATAR = "live_avatar"
    SADTALKER = "sadtalker"

    @property
    def self_voicing(self) -> bool:
        return self is VideoModel.VEO3


CLIP_TRANSITIONS: Dict[ClipStatus, FrozenSet[ClipStatus]] = {
    ClipStatus.PENDING: frozenset({ClipStatus.GENERATING_AUDIO, ClipStatus.GENERATING_VIDEO, ClipStatus.FAILED}),
    ClipStatus.GENERATING_AUDIO: frozenset({ClipStatus.GENERATING_VIDEO, ClipStatus.FAILED}),
    ClipStatus.GENERATING_VIDEO: frozenset({ClipStatus.COMPLETED, ClipStatus.FAILED}),
    ClipStatus.COMPLETED: frozenset(),
    ClipStatus.FAILED: frozenset(),
}

COMPOSITE_TRANSITIONS: Dict[CompositeStatus, FrozenSet[CompositeStatus]] = {
    CompositeStatus.PENDING: frozenset({CompositeStatus.GENERATING_CLIPS}),
    CompositeStatus.GENERATING_CLIPS: frozenset({CompositeStatus.STITCHING, CompositeStatus.FAILED}),
    CompositeStatus.STITCHING: frozenset({CompositeStatus.COMPLETED, CompositeStatus.FAILED}),
    CompositeStatus.COMPLETED: frozenset(),
    CompositeStatus.FAILED: frozenset(),
}


class ActorReference(BaseModel):
    """Actor look and voice used for every clip of a job."""

    image_url: HttpUrl
    voice_description: Optional[str] = Field(None, max_length=1000)
    description: Optional[str] = Field(None, max_length=500)
    gender: Optional[Literal["male", "female"]] = None
    voice_style: Optional[Literal["professional", "casual", "energetic", "friendly", "calm", "bold"]] = None
    tts_voice: Optional[Literal["alloy", "echo", "fable", "onyx", "nova", "shimmer"]] = None


class Clip(BaseModel):
    """Generation unit for one segment of a composite job."""

    id: str
    composite_id: str
    index: int = Field(..., ge=0)
    clip_type: ClipType
    script_content: str
    target_duration: float
    status: ClipStatus = ClipStatus.PENDING
    video_url: Optional[str] = None
    audio_url: Optional[str] = None
    duration_seconds: Optional[float] = None
    provider_request_id: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def progress(self) -> int:
        if self.status == ClipStatus.COMPLETED:
            return 100
        if self.status in (ClipStatus.PENDING, ClipStatus.FAILED):
            return 0
        return 50


class CompositeVideo(BaseModel):
    """A caller's request for one stitched testimonial video."""

    id: str
    status: CompositeStatus = CompositeStatus.PENDING
    script: str
    actor: ActorReference
    aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    video_model: VideoModel = VideoModel.VEO3
    target_duration: float
    current_clip_index: int = 0
    total_clips: int
    final_video_url: Optional[str] = None
    actual_duration: Optional[float] = None
    error_message: Optional[str] = None
    retry_of: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    clips: List[Clip] = Field(default_factory=list)

    @property
    def progress(self) -> int:
        if self.status == CompositeStatus.COMPLETED:
            return 100
        if self.status == CompositeStatus.STITCHING:
            return 90
        if self.status == CompositeStatus.GENERATING_CLIPS and self.total_clips:
            return round(self.current_clip_index / self.total_clips * 80)
        return 0


def validate_clip_transition(clip: Clip, target: ClipStatus, changes: Mapping[str, Any]) -> None:
    """
    Check that a clip may move to `target` with the given field changes.

    Args:
        clip: Clip as currently recorded
        target: Requested status
        changes: Fields written together with the status

    Raises:
        InvalidStateTransition: If the move or its payload is not allowed
    """
    if target not in CLIP_TRANSITIONS[clip.status]:
        raise InvalidStateTransition(clip.status.value, target.value, "clip")

    def value(name: str) -> Any:
        return changes[name] if name in changes else getattr(clip, name)

    if target == ClipStatus.GENERATING_VIDEO and clip.status == ClipStatus.GENERATING_AUDIO:
        if not value("audio_url"):
            raise InvalidStateTransition(clip.status.value, target.value, "clip (missing audio artifact)")
    if target == ClipStatus.COMPLETED:
        if not value("video_url") or value("duration_seconds") is None:
            raise InvalidStateTransition(clip.status.value, target.value, "clip (missing video artifact or duration)")
    if target == ClipStatus.FAILED and not value("error_message"):
        raise InvalidStateTransition(clip.status.value, target.value, "clip (missing error message)")


def validate_composite_transition(
    composite: CompositeVideo,
    target: CompositeStatus,
    changes: Mapping[str, Any]
) -> None:
    """
    Check that a composite job may move to `target` with the given field changes.

    Raises:
        InvalidStateTransition: If the move or its payload is not allowed
    """
    if target not in COMPOSITE_TRANSITIONS[composite.status]:
        raise InvalidStateTransition(composite.status.value, target.value, "composite")

    def value(name: str) -> Any:
        return changes[name] if name in changes else getattr(composite, name)

    if target == CompositeStatus.COMPLETED and not value("final_video_url"):
        raise InvalidStateTransition(composite.status.value, target.value, "composite (missing final video)")
    if target == CompositeStatus.FAILED and not value("error_message"):
        raise InvalidStateTransition(composite.status.value, target.value, "composite (missing error message)")
