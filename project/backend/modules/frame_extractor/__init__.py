"""
Frame extractor module.

Extracts still frames from generated clips for visual continuity.
"""

from modules.frame_extractor.extractor import FrameExtractor, FramePosition, seek_time

__all__ = ["FrameExtractor", "FramePosition", "seek_time"]
