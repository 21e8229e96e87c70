"""
Data models for the composite video pipeline.

This module exports all Pydantic models used across pipeline modules.
"""

from .segment import ClipType, Segment, SegmentationResult
from .composite import (
    ActorReference,
    AspectRatio,
    Clip,
    ClipStatus,
    CompositeStatus,
    CompositeVideo,
    VideoModel,
    validate_clip_transition,
    validate_composite_transition,
)
from .generation import GenerationRequest, GenerationResult, SpeechResult
from .request import CompositeRequest

__all__ = [
    # Segment models
    "ClipType",
    "Segment",
    "SegmentationResult",
    # Composite models
    "ActorReference",
    "AspectRatio",
    "Clip",
    "ClipStatus",
    "CompositeStatus",
    "CompositeVideo",
    "VideoModel",
    "validate_clip_transition",
    "validate_composite_transition",
    # Generation models
    "GenerationRequest",
    "GenerationResult",
    "SpeechResult",
    # Request models
    "CompositeRequest",
]
