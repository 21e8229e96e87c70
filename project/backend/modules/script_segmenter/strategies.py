"""
Segmentation strategies.

A strategy turns a cleaned script into ordered (type, text) pieces. The
heuristic strategy relies on sentence and keyword patterns, so its quality
depends on how conventionally the script is written; the even split is the
deterministic safety net.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from modules.script_segmenter.timing import SEGMENT_TARGETS, WORDS_PER_SECOND, words_for_duration
from shared.models.segment import ClipType

Piece = Tuple[ClipType, str]


class SegmentationStrategy(ABC):
    """Split a cleaned script into hook / testimonial / cta pieces."""

    name: str = "base"

    @abstractmethod
    def split(self, script: str) -> List[Piece]:
        """
        Args:
            script: Whitespace-normalized script

        Returns:
            Ordered pieces whose texts, joined with spaces, equal the script.
            Pieces may be empty; the segmenter drops them.
        """


class HeuristicStrategy(SegmentationStrategy):
    """Hook = first sentence, CTA = trailing action sentence, body = the rest."""

    name = "heuristic"

    HOOK_PATTERN = re.compile(r"^(.+?[.!?]+)\s+(?=\S)")
    CTA_PATTERNS = (
        re.compile(
            r"([^.!?]*\b(?:try|check|visit|get|start|sign up|download|click|learn more|find out)\b[^.!?]*[.!?]+)\s*$",
            re.IGNORECASE,
        ),
        re.compile(r"([^.!?]*\b(?:today|now|for yourself)\b[^.!?]*[.!?]+)\s*$", re.IGNORECASE),
    )

    def __init__(self, max_hook_chars: int = 150, min_cta_chars: int = 10, max_cta_chars: int = 150):
        self.max_hook_chars = max_hook_chars
        self.min_cta_chars = min_cta_chars
        self.max_cta_chars = max_cta_chars

    def extract_hook(self, script: str) -> Tuple[str, str]:
        """Return (hook, remaining)."""
        match = self.HOOK_PATTERN.match(script)
        if match and len(match.group(1)) < self.max_hook_chars:
            return match.group(1).strip(), script[match.end():].strip()

        words = script.split()
        count = words_for_duration(SEGMENT_TARGETS[ClipType.HOOK].ideal)
        return " ".join(words[:count]), " ".join(words[count:])

    def extract_cta(self, text: str) -> Tuple[str, str]:
        """Return (cta, remaining)."""
        if not text:
            return "", ""
        for pattern in self.CTA_PATTERNS:
            match = pattern.search(text)
            if not match:
                continue
            cta = match.group(1).strip()
            if self.min_cta_chars < len(cta) < self.max_cta_chars:
                return cta, text[:match.start(1)].strip()

        words = text.split()
        count = words_for_duration(SEGMENT_TARGETS[ClipType.CTA].ideal)
        return " ".join(words[-count:]), " ".join(words[:-count])

    def split(self, script: str) -> List[Piece]:
        hook, after_hook = self.extract_hook(script)
        cta, body = self.extract_cta(after_hook)
        return [
            (ClipType.HOOK, hook),
            (ClipType.TESTIMONIAL, body),
            (ClipType.CTA, cta),
        ]


class EvenSplitStrategy(SegmentationStrategy):
    """20 / 60 / 20 split by word count, with hook and CTA held to their longest clip length."""

    name = "even_split"

    def __init__(self, hook_share: float = 0.2, cta_share: float = 0.2):
        self.hook_share = hook_share
        self.cta_share = cta_share
        self.max_hook_words = int(SEGMENT_TARGETS[ClipType.HOOK].max * WORDS_PER_SECOND)
        self.max_cta_words = int(SEGMENT_TARGETS[ClipType.CTA].max * WORDS_PER_SECOND)

    def split(self, script: str) -> List[Piece]:
        words = script.split()
        total = len(words)
        if total < 3:
            return [(ClipType.TESTIMONIAL, script)]

        hook_count = min(max(1, round(total * self.hook_share)), self.max_hook_words)
        cta_count = min(max(1, round(total * self.cta_share)), self.max_cta_words)
        # Leave at least one word for the body
        while hook_count + cta_count > total - 1:
            if hook_count >= cta_count:
                hook_count -= 1
            else:
                cta_count -= 1

        return [
            (ClipType.HOOK, " ".join(words[:hook_count])),
            (ClipType.TESTIMONIAL, " ".join(words[hook_count:total - cta_count])),
            (ClipType.CTA, " ".join(words[total - cta_count:])),
        ]


_SENTENCE_END = re.compile(r"[.!?]+\s*")


def nearest_sentence_boundary(text: str, target: int, tolerance: float) -> Optional[int]:
    """
    Offset just after the sentence end closest to `target`, if one lies
    strictly within `tolerance` characters of it.
    """
    best: Optional[int] = None
    best_distance = tolerance
    for match in _SENTENCE_END.finditer(text):
        position = match.end()
        if position <= 0 or position >= len(text):
            continue
        distance = abs(position - target)
        if distance < best_distance:
            best, best_distance = position, distance
    return best


def split_long_text(text: str, max_duration: float) -> List[str]:
    """
    Split body text into pieces of roughly `max_duration` seconds of speech.

    Cuts at the sentence boundary nearest the character budget, or after
    a fixed word count when no boundary is close enough. Splitting continues
    until every piece fits the budget, so no piece is left oversized.
    """
    word_budget = max(1, words_for_duration(max_duration))
    target_chars = word_budget * 5  # ~5 chars per word
    pieces: List[str] = []
    remaining = text.strip()

    while remaining:
        if len(remaining) <= target_chars * 1.2:
            pieces.append(remaining)
            break

        boundary = nearest_sentence_boundary(remaining, target_chars, target_chars * 0.2)
        if boundary is None:
            words = remaining.split()
            pieces.append(" ".join(words[:word_budget]))
            remaining = " ".join(words[word_budget:])
        else:
            pieces.append(remaining[:boundary].strip())
            remaining = remaining[boundary:].strip()

    return pieces
