"""
Validation utilities.

Shared validation for inbound composite job requests.
"""

from typing import Optional
from urllib.parse import urlparse

from shared.errors import ValidationError

MIN_SCRIPT_WORDS = 3
MAX_SCRIPT_LENGTH = 5000
MIN_TARGET_DURATION = 4.0
MAX_TARGET_DURATION = 180.0
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")


def validate_script(script: Optional[str], max_length: int = MAX_SCRIPT_LENGTH) -> str:
    """
    Validate a testimonial script.

    Args:
        script: Raw script text
        max_length: Maximum number of characters

    Returns:
        Script with surrounding whitespace removed

    Raises:
        ValidationError: If script is missing, too short or too long
    """
    if script is None or not script.strip():
        raise ValidationError("Script is required")

    script = script.strip()
    if len(script) > max_length:
        raise ValidationError(
            f"Script must be at most {max_length} characters (got {len(script)})"
        )
    if len(script.split()) < MIN_SCRIPT_WORDS:
        raise ValidationError(f"Script must contain at least {MIN_SCRIPT_WORDS} words")
    return script


def validate_image_url(url: Optional[str]) -> str:
    """
    Validate an actor reference image URL.

    The URL must be absolute http(s); the extension is checked only when
    the path has one (CDN URLs often have none).

    Raises:
        ValidationError: If URL is missing or malformed
    """
    if not url:
        raise ValidationError("Actor reference image URL is required")
    parsed = urlparse(str(url))
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Actor reference image must be an http(s) URL")
    path = parsed.path.lower()
    if "." in path.rsplit("/", 1)[-1] and not path.endswith(IMAGE_EXTENSIONS):
        raise ValidationError(
            f"Actor reference image must be one of: {', '.join(IMAGE_EXTENSIONS)}"
        )
    return str(url)


def validate_target_duration(
    seconds: float,
    min_seconds: float = MIN_TARGET_DURATION,
    max_seconds: float = MAX_TARGET_DURATION
) -> float:
    """
    Validate the requested total video length.

    Raises:
        ValidationError: If duration is outside [min_seconds, max_seconds]
    """
    if seconds < min_seconds or seconds > max_seconds:
        raise ValidationError(
            f"Target duration must be between {min_seconds:g} and {max_seconds:g} seconds"
        )
    return float(seconds)
