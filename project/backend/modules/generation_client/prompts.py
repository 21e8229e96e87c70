"""
Prompt builders for talking-head generation.
"""

from typing import Optional

from shared.models.composite import ActorReference

VOICE_STYLES = {
    "professional": "clear, confident {gender} voice with professional tone",
    "casual": "relaxed, friendly {gender} voice with casual conversational tone",
    "energetic": "upbeat, enthusiastic {gender} voice with dynamic energy",
    "friendly": "warm, approachable {gender} voice with genuine warmth",
    "calm": "soothing, gentle {gender} voice with relaxed pace",
    "bold": "strong, confident {gender} voice with assertive delivery",
}

DEFAULT_VOICE_STYLE = "professional"


def voice_character(actor: ActorReference) -> str:
    """
    Voice description repeated verbatim in every clip's prompt.

    The actor's own voice description wins; otherwise one is derived from
    their style and gender.
    """
    if actor.voice_description:
        return actor.voice_description
    gender = "female" if actor.gender == "female" else "male"
    template = VOICE_STYLES.get(actor.voice_style or DEFAULT_VOICE_STYLE, VOICE_STYLES[DEFAULT_VOICE_STYLE])
    return template.format(gender=gender)


def build_testimonial_prompt(
    script_content: str,
    actor: ActorReference,
    aspect_ratio: Optional[str] = "9:16"
) -> str:
    """
    Prompt for self-voicing models: the actor says `script_content` to camera.

    Args:
        script_content: Words to speak, quoted into the prompt
        actor: Actor whose description and voice are used
        aspect_ratio: Output frame, mentioned in the style section
    """
    person = "woman" if actor.gender == "female" else "man"
    description = actor.description or "professional person"
    orientation = "vertical" if aspect_ratio in ("9:16", "4:5") else "framed"

    return f"""A {description} ({person}) recording a selfie-style video testimonial on their phone. They speak directly to camera saying: "{script_content}"

VOICE CHARACTER:
{voice_character(actor)}
Speak naturally and conversationally while maintaining this distinct voice character.

ZERO TOLERANCE - CLEAN VIDEO ONLY:
- Avoid any captions, subtitles, or text overlays
- Avoid any words, letters, or characters appearing on screen
- Avoid lower thirds, titles, watermarks, or graphics
- The frame contains ONLY the person speaking against their background - nothing else
- This is a raw, unedited phone video with absolutely zero post-production text added

VIDEO STYLE:
- Authentic smartphone selfie video, {orientation} {aspect_ratio} format
- Natural indoor lighting, slightly imperfect framing (real UGC feel)
- Person fills most of the frame, eye contact with camera
- Single continuous shot, avoid cuts or transitions
- Starts speaking immediately from first frame

The person delivers the testimonial naturally and conversationally, like sharing a genuine recommendation with a friend."""


def build_scene_prompt(actor: ActorReference) -> str:
    """Scene prompt for audio-driven animation models."""
    style = actor.voice_style or DEFAULT_VOICE_STYLE
    gender = actor.gender or "person"
    return (
        f"A {style} person speaking naturally to camera, {gender}, "
        "testimonial video style, well-lit, high quality"
    )
