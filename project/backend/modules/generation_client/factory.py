"""
Client factories.
"""

from typing import Optional, Union

from modules.generation_client.avatar import LiveAvatarClient, SadTalkerClient
from modules.generation_client.base import SpeechSynthesizer, VideoGenerationClient
from modules.generation_client.fal import FalTransport
from modules.generation_client.tts import OpenAISpeechSynthesizer
from modules.generation_client.veo3 import Veo3Client
from shared.config import settings
from shared.models.composite import VideoModel
from shared.storage import StorageClient

_CLIENTS = {
    VideoModel.VEO3: Veo3Client,
    VideoModel.LIVE_AVATAR: LiveAvatarClient,
    VideoModel.SADTALKER: SadTalkerClient,
}


def get_video_client(
    model: Optional[Union[VideoModel, str]] = None,
    transport: Optional[FalTransport] = None
) -> VideoGenerationClient:
    """
    Video client for a model family (settings.video_model when omitted).

    Raises:
        ValueError: Unknown model name
    """
    model = VideoModel(model or settings.video_model)
    return _CLIENTS[model](transport=transport)


def get_speech_synthesizer(storage: Optional[StorageClient] = None) -> SpeechSynthesizer:
    return OpenAISpeechSynthesizer(storage=storage)
