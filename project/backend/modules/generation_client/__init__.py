"""
Generation client module.

Talking-head video generation (self-voicing or audio-driven) and speech
synthesis behind one contract.
"""

from modules.generation_client.avatar import LiveAvatarClient, SadTalkerClient
from modules.generation_client.base import SpeechSynthesizer, VideoGenerationClient
from modules.generation_client.factory import get_speech_synthesizer, get_video_client
from modules.generation_client.prompts import build_scene_prompt, build_testimonial_prompt
from modules.generation_client.tts import OpenAISpeechSynthesizer, voice_for_actor
from modules.generation_client.veo3 import Veo3Client, select_veo_duration

__all__ = [
    "VideoGenerationClient",
    "SpeechSynthesizer",
    "Veo3Client",
    "SadTalkerClient",
    "LiveAvatarClient",
    "OpenAISpeechSynthesizer",
    "get_video_client",
    "get_speech_synthesizer",
    "build_testimonial_prompt",
    "build_scene_prompt",
    "select_veo_duration",
    "voice_for_actor",
]
