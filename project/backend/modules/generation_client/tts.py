"""
OpenAI text-to-speech.

Synthesize a segment's script, upload the mp3 to the artifact store and
measure its duration.
"""

import io
from typing import Optional, Tuple

import openai
from mutagen import File as MutagenFile
from mutagen import MutagenError
from openai import AsyncOpenAI

from modules.generation_client.base import SpeechSynthesizer
from modules.script_segmenter.timing import estimate_duration
from shared.config import settings
from shared.errors import GenerationFailed, QuotaExceededError, TransientProviderError, ValidationError
from shared.logging import get_logger
from shared.models.composite import ActorReference
from shared.models.generation import SpeechResult
from shared.resilience import SPEECH, IntegrationGuard, get_guard
from shared.storage import StorageClient, create_storage_client

logger = get_logger("generation_client")

TTS_VOICES = {
    "alloy": "Neutral and balanced",
    "echo": "Warm and conversational",
    "fable": "British and expressive",
    "onyx": "Deep and authoritative",
    "nova": "Friendly and upbeat",
    "shimmer": "Soft and gentle",
}

DEFAULT_VOICE = "nova"

# Primary voice per actor gender
VOICE_BY_GENDER = {
    "male": "onyx",
    "female": "nova",
}

MAX_TTS_CHARS = 4096


def voice_for_actor(actor: ActorReference) -> str:
    """Explicit actor voice, else the primary voice for their gender, else the default."""
    if actor.tts_voice:
        return actor.tts_voice
    return VOICE_BY_GENDER.get(actor.gender or "", DEFAULT_VOICE)


def truncate_for_tts(text: str, limit: int = MAX_TTS_CHARS) -> Tuple[str, bool]:
    """
    Fit text into the speech API's input limit.

    Cuts at the last sentence end inside the limit when that keeps more than
    half the text, otherwise hard-cuts and appends "...".

    Returns:
        (text, truncated)
    """
    if len(text) <= limit:
        return text, False
    head = text[:limit]
    last_end = max(head.rfind("."), head.rfind("?"), head.rfind("!"))
    if last_end > limit * 0.5:
        return head[:last_end + 1], True
    return head[:limit - 3] + "...", True


def audio_duration(data: bytes, text: str) -> float:
    """Duration read from the mp3 headers; falls back to the speaking-rate estimate."""
    try:
        audio = MutagenFile(io.BytesIO(data))
        if audio is not None and audio.info.length > 0:
            return float(audio.info.length)
    except MutagenError as e:
        logger.warning("Could not read audio metadata, estimating duration", extra={"error": str(e)})
    return estimate_duration(text)


class OpenAISpeechSynthesizer(SpeechSynthesizer):
    """
    OpenAI speech synthesis with artifact upload.

    Args:
        storage: Artifact store for the mp3
        client: AsyncOpenAI client (built from settings when omitted)
        guard: Integration guard (the shared speech guard when omitted)
        model: Speech model name
    """

    def __init__(
        self,
        storage: Optional[StorageClient] = None,
        client: Optional[AsyncOpenAI] = None,
        guard: Optional[IntegrationGuard] = None,
        model: Optional[str] = None
    ):
        self.storage = storage or create_storage_client()
        self._client = client
        self._guard = guard
        self.model = model or settings.tts_model

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            # Retries are handled by the integration guard
            self._client = AsyncOpenAI(
                api_key=settings.openai_api_key or None,
                timeout=settings.speech_timeout_seconds,
                max_retries=0,
            )
        return self._client

    @property
    def guard(self) -> IntegrationGuard:
        if self._guard is None:
            self._guard = get_guard(SPEECH)
        return self._guard

    async def _create_speech(self, text: str, voice: str) -> bytes:
        try:
            response = await self.client.audio.speech.create(model=self.model, voice=voice, input=text)
        except openai.APIConnectionError as e:
            # Includes APITimeoutError
            raise TransientProviderError(f"Speech request failed: {str(e)}", provider=SPEECH) from e
        except openai.APIStatusError as e:
            if e.status_code == 429:
                raise QuotaExceededError(
                    f"Speech quota exceeded: {e.message}",
                    provider=SPEECH,
                    provider_message=e.message,
                ) from e
            if e.status_code >= 500:
                raise TransientProviderError(
                    f"Speech request failed with HTTP {e.status_code}",
                    provider=SPEECH,
                    http_status=e.status_code,
                    provider_message=e.message,
                ) from e
            raise GenerationFailed(
                f"Speech request rejected with HTTP {e.status_code}: {e.message}",
                http_status=e.status_code,
                provider_message=e.message,
            ) from e
        data = response.content
        if not data:
            raise GenerationFailed("Speech response contained no audio")
        return data

    async def synthesize(self, text: str, voice: Optional[str] = None) -> SpeechResult:
        if not text or not text.strip():
            raise ValidationError("Text cannot be empty")
        voice = voice or DEFAULT_VOICE
        if voice not in TTS_VOICES:
            raise ValidationError(f"Unknown voice '{voice}'")

        text, truncated = truncate_for_tts(text.strip())
        if truncated:
            logger.warning("Speech text truncated", extra={"length": len(text), "limit": MAX_TTS_CHARS})

        logger.info("Generating speech", extra={"text_length": len(text), "voice": voice, "model": self.model})
        try:
            data = await self.guard.call(self._create_speech, text, voice, operation="speech")
        except TransientProviderError as e:
            raise GenerationFailed(
                f"Speech synthesis failed after retries: {e.message}",
                http_status=e.http_status,
                provider_message=e.provider_message,
            ) from e

        audio_url = await self.storage.upload(data, "audio/mpeg")
        duration = audio_duration(data, text)
        logger.info("Speech generated", extra={"bytes": len(data), "voice": voice, "duration": round(duration, 2)})
        return SpeechResult(audio_url=audio_url, duration_seconds=duration, voice=voice, truncated=truncated)
