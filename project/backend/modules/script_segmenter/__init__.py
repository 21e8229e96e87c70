"""
Script segmenter module.

Splits a testimonial script into hook, testimonial and call-to-action
segments with speaking-time estimates and planned clip lengths.
"""

from modules.script_segmenter.segmenter import ScriptSegmenter, segment_script, validate_segmentation
from modules.script_segmenter.strategies import EvenSplitStrategy, HeuristicStrategy, SegmentationStrategy
from modules.script_segmenter.timing import estimate_duration, words_for_duration

__all__ = [
    "ScriptSegmenter",
    "segment_script",
    "validate_segmentation",
    "SegmentationStrategy",
    "HeuristicStrategy",
    "EvenSplitStrategy",
    "estimate_duration",
    "words_for_duration",
]
