"""
Script segmentation.

Split a testimonial script into ordered hook / testimonial / cta segments,
each sized for one generated clip.
"""

from typing import List, Optional, Sequence, Tuple

from modules.script_segmenter.strategies import (
    EvenSplitStrategy,
    HeuristicStrategy,
    Piece,
    SegmentationStrategy,
    split_long_text,
)
from modules.script_segmenter.timing import (
    MAX_CHARS_PER_SEGMENT,
    MIN_SEGMENT_DURATION,
    SEGMENT_TARGETS,
    clean_script,
    count_words,
    estimate_duration,
)
from shared.config import settings
from shared.errors import ValidationError
from shared.logging import get_logger
from shared.models.segment import ClipType, Segment, SegmentationResult

logger = get_logger("script_segmenter")


def validate_segmentation(segments: Sequence[Segment]) -> List[str]:
    """
    Check segments against downstream limits.

    Args:
        segments: Segments in order

    Returns:
        Human-readable problems; empty when the segmentation is usable
    """
    errors: List[str] = []
    if not segments:
        errors.append("No segments generated")

    for position, segment in enumerate(segments):
        label = f"{segment.type.value} segment {segment.order}"
        if segment.order != position:
            errors.append(f"{label} is out of order (expected order {position})")
        if not segment.content.strip():
            errors.append(f"Empty content in {label}")
        if len(segment.content) > MAX_CHARS_PER_SEGMENT:
            errors.append(f"{label} exceeds {MAX_CHARS_PER_SEGMENT} characters")
        if segment.target_duration < MIN_SEGMENT_DURATION:
            errors.append(f"{label} too short (< {MIN_SEGMENT_DURATION:g} seconds)")

    return errors


def plan_durations(
    pieces: Sequence[Piece],
    target_total_duration: float,
    max_clip_duration: float
) -> List[float]:
    """
    Planned clip length for each piece.

    Hook and CTA get at least their type minimum; testimonial pieces share
    what is left of the total, weighted by word count and capped at the
    maximum clip length. No piece is planned shorter than its speaking time.
    """
    planned: List[Optional[float]] = []
    fixed_total = 0.0
    body_words = 0
    for clip_type, text in pieces:
        if clip_type == ClipType.TESTIMONIAL:
            planned.append(None)
            body_words += count_words(text)
        else:
            value = max(estimate_duration(text), SEGMENT_TARGETS[clip_type].min, MIN_SEGMENT_DURATION)
            planned.append(value)
            fixed_total += value

    budget = max(target_total_duration - fixed_total, 0.0)
    result: List[float] = []
    for (clip_type, text), value in zip(pieces, planned):
        if value is None:
            share = budget * count_words(text) / body_words if body_words else 0.0
            value = max(estimate_duration(text), MIN_SEGMENT_DURATION, min(share, max_clip_duration))
        result.append(round(value, 2))
    return result


class ScriptSegmenter:
    """
    Segment scripts with a primary strategy and an even-split fallback.

    Args:
        strategy: Primary strategy (defaults to HeuristicStrategy)
        fallback: Strategy used when the primary output fails validation
    """

    def __init__(
        self,
        strategy: Optional[SegmentationStrategy] = None,
        fallback: Optional[SegmentationStrategy] = None
    ):
        self.strategy = strategy or HeuristicStrategy()
        self.fallback = fallback or EvenSplitStrategy()

    def _expand(self, pieces: Sequence[Piece], max_clip_duration: float) -> List[Piece]:
        expanded: List[Piece] = []
        for clip_type, text in pieces:
            text = text.strip()
            if not text:
                continue
            if clip_type == ClipType.TESTIMONIAL and estimate_duration(text) > max_clip_duration:
                expanded.extend((clip_type, part) for part in split_long_text(text, max_clip_duration) if part)
            else:
                expanded.append((clip_type, text))
        return expanded

    def build(
        self,
        strategy: SegmentationStrategy,
        script: str,
        target_total_duration: float,
        max_clip_duration: float
    ) -> Tuple[SegmentationResult, List[str]]:
        """Run one strategy and validate its output."""
        pieces = self._expand(strategy.split(script), max_clip_duration)
        targets = plan_durations(pieces, target_total_duration, max_clip_duration)
        segments = [
            Segment(
                type=clip_type,
                content=text,
                order=order,
                estimated_duration=estimate_duration(text),
                target_duration=target,
            )
            for order, ((clip_type, text), target) in enumerate(zip(pieces, targets))
        ]
        result = SegmentationResult(segments=segments, strategy=strategy.name)
        return result, validate_segmentation(segments)

    def segment(
        self,
        full_script: str,
        target_total_duration: Optional[float] = None,
        max_clip_duration: Optional[float] = None
    ) -> SegmentationResult:
        """
        Segment a full script.

        Args:
            full_script: Testimonial text
            target_total_duration: Desired total video length in seconds
            max_clip_duration: Longest testimonial piece, in seconds of speech

        Returns:
            Validated segmentation

        Raises:
            ValidationError: If the script is empty or no strategy produces
                a valid segmentation
        """
        target_total = target_total_duration or settings.default_target_duration
        max_clip = max_clip_duration or settings.max_clip_duration
        script = clean_script(full_script or "")
        if not script:
            raise ValidationError("Script is empty")

        logger.info(
            "Segmenting script",
            extra={"script_length": len(script), "target_total": target_total, "max_clip_duration": max_clip}
        )

        errors: List[str] = []
        for strategy in (self.strategy, self.fallback):
            result, errors = self.build(strategy, script, target_total, max_clip)
            if not errors:
                logger.info(
                    "Script segmented",
                    extra={
                        "strategy": strategy.name,
                        "clip_count": result.clip_count,
                        "estimated_duration": round(result.estimated_duration, 2),
                        "planned_duration": round(result.planned_duration, 2),
                    }
                )
                return result
            logger.warning(
                "Segmentation failed validation",
                extra={"strategy": strategy.name, "errors": errors}
            )

        raise ValidationError(f"Script could not be segmented: {'; '.join(errors)}", code="SEGMENTATION_FAILED")


def segment_script(
    full_script: str,
    target_total_duration: Optional[float] = None,
    max_clip_duration: Optional[float] = None
) -> SegmentationResult:
    """Segment with the default strategies."""
    return ScriptSegmenter().segment(full_script, target_total_duration, max_clip_duration)
