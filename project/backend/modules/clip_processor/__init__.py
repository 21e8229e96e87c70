"""
Clip processor module.

Generates one clip of a composite job through its state machine.
"""

from modules.clip_processor.processor import ClipProcessor, fallback_duration

__all__ = ["ClipProcessor", "fallback_duration"]
