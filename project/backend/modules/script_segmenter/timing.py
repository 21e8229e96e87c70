"""
Speaking-rate constants and duration helpers.
"""

import math
from dataclasses import dataclass

from shared.models.segment import ClipType

WORDS_PER_SECOND = 2.5

# Downstream speech/video models reject longer inputs
MAX_CHARS_PER_SEGMENT = 800

MIN_SEGMENT_DURATION = 2.0


@dataclass(frozen=True)
class DurationTarget:
    min: float
    max: float
    ideal: float


SEGMENT_TARGETS = {
    ClipType.HOOK: DurationTarget(min=4, max=7, ideal=5),
    ClipType.TESTIMONIAL: DurationTarget(min=8, max=25, ideal=15),
    ClipType.CTA: DurationTarget(min=4, max=7, ideal=5),
}


def clean_script(text: str) -> str:
    """Collapse every whitespace run to a single space."""
    return " ".join(text.split())


def count_words(text: str) -> int:
    return len(text.split())


def estimate_duration(text: str) -> float:
    """Speaking time in seconds: words / WORDS_PER_SECOND."""
    return count_words(text) / WORDS_PER_SECOND


def words_for_duration(seconds: float) -> int:
    """Words spoken in `seconds`, rounded half-up (5s -> 13 words)."""
    return int(math.floor(seconds * WORDS_PER_SECOND + 0.5))
