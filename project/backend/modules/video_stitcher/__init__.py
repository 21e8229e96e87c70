"""
Video stitcher module.

Concatenates completed clips into the final composite video.
"""

from modules.video_stitcher.stitcher import StitchResult, VideoStitcher

__all__ = ["VideoStitcher", "StitchResult"]
