"""
Clip processing.

Drive one clip through its state machine: optional speech synthesis, video
generation, then completion or failure. Every status change is persisted
before the next step starts.
"""

import math
from typing import Optional

from modules.generation_client.base import SpeechSynthesizer, VideoGenerationClient
from modules.generation_client.prompts import build_scene_prompt, build_testimonial_prompt
from modules.generation_client.tts import voice_for_actor
from modules.script_segmenter.timing import WORDS_PER_SECOND, count_words
from shared.composite_store import CompositeStore
from shared.errors import GenerationFailed, PersistenceError
from shared.logging import get_logger
from shared.models.composite import ActorReference, AspectRatio, Clip, ClipStatus
from shared.models.generation import GenerationRequest

logger = get_logger("clip_processor")


def fallback_duration(script_content: str) -> float:
    """Whole seconds needed to speak the script."""
    return float(math.ceil(count_words(script_content) / WORDS_PER_SECOND))


class ClipProcessor:
    """
    Generate the video for one clip.

    Args:
        store: Composite job store
        video_client: Video generation client for the job's model
        speech_synthesizer: Required when the video client is not self-voicing
    """

    def __init__(
        self,
        store: CompositeStore,
        video_client: VideoGenerationClient,
        speech_synthesizer: Optional[SpeechSynthesizer] = None
    ):
        if not video_client.self_voicing and speech_synthesizer is None:
            raise ValueError(f"{video_client.name} needs a speech synthesizer")
        self.store = store
        self.video_client = video_client
        self.speech_synthesizer = speech_synthesizer

    async def _generate(
        self,
        clip: Clip,
        actor: ActorReference,
        image_url: str,
        aspect_ratio: AspectRatio
    ) -> Clip:
        if self.video_client.self_voicing:
            clip = await self.store.transition_clip(clip, ClipStatus.GENERATING_VIDEO)
            request = GenerationRequest(
                continuity_image=image_url,
                prompt_text=build_testimonial_prompt(clip.script_content, actor, aspect_ratio.value),
                duration_hint=clip.target_duration,
                aspect_ratio=aspect_ratio,
            )
        else:
            clip = await self.store.transition_clip(clip, ClipStatus.GENERATING_AUDIO)
            speech = await self.speech_synthesizer.synthesize(clip.script_content, voice_for_actor(actor))
            clip = await self.store.transition_clip(clip, ClipStatus.GENERATING_VIDEO, audio_url=speech.audio_url)
            request = GenerationRequest(
                continuity_image=image_url,
                prompt_text=build_scene_prompt(actor),
                duration_hint=speech.duration_seconds,
                audio_url=speech.audio_url,
                aspect_ratio=aspect_ratio,
            )

        result = await self.video_client.generate(request)
        duration = result.duration_seconds or fallback_duration(clip.script_content)
        return await self.store.transition_clip(
            clip,
            ClipStatus.COMPLETED,
            video_url=result.video_url,
            duration_seconds=duration,
            provider_request_id=result.provider_request_id,
        )

    async def process(
        self,
        clip: Clip,
        actor: ActorReference,
        continuity_image: Optional[str] = None,
        aspect_ratio: AspectRatio = AspectRatio.PORTRAIT
    ) -> Clip:
        """
        Generate a pending clip.

        Args:
            clip: Clip in pending status
            actor: Actor reference for look and voice
            continuity_image: Last frame of the previous clip; the actor's
                reference image is used when omitted
            aspect_ratio: Output frame

        Returns:
            The completed clip

        Raises:
            GenerationFailed: Any generation error; the clip is recorded as
                failed first
            PersistenceError: A status write failed (clip state unknown)
        """
        image_url = continuity_image or str(actor.image_url)
        logger.info(
            "Processing clip",
            extra={
                "clip_id": clip.id,
                "clip_index": clip.index,
                "clip_type": clip.clip_type.value,
                "model": self.video_client.name,
                "frame_continuity": continuity_image is not None,
            }
        )

        try:
            completed = await self._generate(clip, actor, image_url, aspect_ratio)
        except PersistenceError:
            raise
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.error(
                "Clip processing failed",
                exc_info=e,
                extra={"clip_id": clip.id, "clip_index": clip.index, "error": message}
            )
            current = await self._current(clip)
            if current.status not in (ClipStatus.COMPLETED, ClipStatus.FAILED):
                await self.store.transition_clip(current, ClipStatus.FAILED, error_message=message)
            if isinstance(e, GenerationFailed):
                raise
            raise GenerationFailed(
                message,
                http_status=getattr(e, "http_status", None),
                provider_message=getattr(e, "provider_message", None),
            ) from e

        logger.info(
            "Clip completed",
            extra={"clip_id": clip.id, "clip_index": clip.index, "duration": completed.duration_seconds}
        )
        return completed

    async def _current(self, clip: Clip) -> Clip:
        """Re-read the clip so the failure transition starts from its recorded status."""
        composite = await self.store.get(clip.composite_id)
        for candidate in composite.clips:
            if candidate.id == clip.id:
                return candidate
        return clip
