"""
Unit tests for video generation clients and the fal transport.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fal_client.client import FalClientError

from modules.generation_client import (
    LiveAvatarClient,
    SadTalkerClient,
    Veo3Client,
    build_testimonial_prompt,
    get_video_client,
    select_veo_duration,
)
from modules.generation_client.avatar import _AudioDrivenClient, live_avatar_chunks
from modules.generation_client.fal import FalTransport, classify_provider_error
from shared.errors import GenerationFailed, QuotaExceededError, TransientProviderError
from shared.models.composite import AspectRatio, VideoModel
from shared.models.generation import GenerationRequest


def _http_error(status: int, text: str = "") -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://queue.fal.run/fal-ai/veo3.1")
    response = httpx.Response(status, request=request, text=text)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


def _request(**overrides) -> GenerationRequest:
    data = {
        "continuity_image": "https://cdn.example.com/frames/last.png",
        "prompt_text": "Say hello",
        "duration_hint": 5.0,
    }
    data.update(overrides)
    return GenerationRequest(**data)


def _mock_transport(output=None, request_id="req-1"):
    transport = MagicMock()
    transport.run = AsyncMock(return_value=(output or {"video": {"url": "https://fal.media/out.mp4"}}, request_id))
    return transport


class TestSelectVeoDuration:
    """Test Veo output length selection."""

    @pytest.mark.parametrize("seconds,expected", [
        (1.2, 4), (4.0, 4), (4.1, 6), (6.0, 6), (6.5, 8), (8.0, 8), (30.0, 8),
    ])
    def test_rounds_up_to_supported_length(self, seconds, expected):
        assert select_veo_duration(seconds) == expected


class TestTestimonialPrompt:
    """Test the self-voicing prompt."""

    def test_sections_and_script(self, actor):
        prompt = build_testimonial_prompt("I love this product.", actor)

        assert '"I love this product."' in prompt
        assert "VOICE CHARACTER:" in prompt
        assert "ZERO TOLERANCE - CLEAN VIDEO ONLY:" in prompt
        assert "VIDEO STYLE:" in prompt
        assert "friendly woman in her thirties (woman)" in prompt

    def test_style_derived_voice(self, actor):
        prompt = build_testimonial_prompt("Hi.", actor)

        assert "warm, approachable female voice with genuine warmth" in prompt

    def test_explicit_voice_description_wins(self, actor):
        actor = actor.model_copy(update={"voice_description": "Low, raspy voice with a Texan drawl"})

        prompt = build_testimonial_prompt("Hi.", actor)

        assert "Low, raspy voice with a Texan drawl" in prompt
        assert "genuine warmth" not in prompt


class TestVeo3Client:
    """Test the Veo3 client."""

    @pytest.mark.asyncio
    async def test_generate(self):
        transport = _mock_transport(request_id="req-42")
        client = Veo3Client(transport=transport)

        result = await client.generate(_request(duration_hint=5.0))

        model_id, arguments = transport.run.call_args.args
        assert model_id == "fal-ai/veo3.1/fast/image-to-video"
        assert arguments == {
            "prompt": "Say hello",
            "image_url": "https://cdn.example.com/frames/last.png",
            "aspect_ratio": "9:16",
            "duration": "6s",
            "resolution": "720p",
            "generate_audio": True,
            "auto_fix": True,
        }
        assert result.video_url == "https://fal.media/out.mp4"
        assert result.duration_seconds == 6.0
        assert result.provider_request_id == "req-42"

    @pytest.mark.asyncio
    async def test_unsupported_aspect_ratio_left_to_model(self):
        transport = _mock_transport()
        client = Veo3Client(transport=transport)

        await client.generate(_request(aspect_ratio=AspectRatio.SQUARE))

        assert transport.run.call_args.args[1]["aspect_ratio"] == "auto"

    @pytest.mark.asyncio
    async def test_missing_video_url(self):
        client = Veo3Client(transport=_mock_transport(output={"video": {}}))

        with pytest.raises(GenerationFailed):
            await client.generate(_request())

    def test_self_voicing_and_cost(self):
        client = Veo3Client(transport=_mock_transport())

        assert client.self_voicing is True
        assert client.estimate_cost(8) == Decimal("1.20")


class TestAudioDrivenClients:
    """Test SadTalker and Live Avatar."""

    def test_base_requires_arguments_builder(self):
        with pytest.raises(TypeError):
            _AudioDrivenClient(transport=_mock_transport())

    @pytest.mark.asyncio
    async def test_sadtalker_arguments(self):
        transport = _mock_transport()
        client = SadTalkerClient(transport=transport)

        result = await client.generate(_request(audio_url="https://cdn.example.com/a.mp3"))

        model_id, arguments = transport.run.call_args.args
        assert model_id == "fal-ai/sadtalker"
        assert arguments["source_image_url"] == "https://cdn.example.com/frames/last.png"
        assert arguments["driven_audio_url"] == "https://cdn.example.com/a.mp3"
        assert arguments["face_model_resolution"] == "512"
        assert result.duration_seconds is None

    @pytest.mark.asyncio
    async def test_requires_audio(self):
        transport = _mock_transport()
        client = SadTalkerClient(transport=transport)

        with pytest.raises(GenerationFailed):
            await client.generate(_request())

        transport.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_live_avatar_reports_duration(self):
        transport = _mock_transport(output={"video": {"url": "https://fal.media/a.mp4", "duration": 7.4}})
        client = LiveAvatarClient(transport=transport)

        result = await client.generate(_request(audio_url="https://cdn.example.com/a.mp3", duration_hint=7.5))

        arguments = transport.run.call_args.args[1]
        assert arguments["num_clips"] == 4
        assert arguments["frames_per_clip"] == 48
        assert result.duration_seconds == 7.4

    def test_live_avatar_chunks(self):
        assert live_avatar_chunks(3) == 2
        assert live_avatar_chunks(7.5) == 4


class TestFactory:
    """Test client selection."""

    def test_each_model(self):
        assert isinstance(get_video_client(VideoModel.VEO3, transport=_mock_transport()), Veo3Client)
        assert isinstance(get_video_client("sadtalker", transport=_mock_transport()), SadTalkerClient)
        assert isinstance(get_video_client("live_avatar", transport=_mock_transport()), LiveAvatarClient)

    def test_unknown_model(self):
        with pytest.raises(ValueError):
            get_video_client("kling")


class TestClassifyProviderError:
    """Test provider failure mapping."""

    def test_quota(self):
        assert isinstance(classify_provider_error("m", 429, "slow down"), QuotaExceededError)

    @pytest.mark.parametrize("status", [500, 502, 503, 504, 408])
    def test_transient(self, status):
        error = classify_provider_error("m", status, None)

        assert isinstance(error, TransientProviderError)
        assert error.http_status == status

    @pytest.mark.parametrize("status", [400, 401, 404, 422, None])
    def test_permanent(self, status):
        error = classify_provider_error("m", status, "bad input")

        assert isinstance(error, GenerationFailed)
        assert error.http_status == status
        assert error.provider_message == "bad input"


class TestFalTransport:
    """Test fal transport error handling through the guard."""

    def _client(self, submit):
        client = MagicMock()
        client.submit = submit
        return client

    @pytest.mark.asyncio
    async def test_success(self, fast_guard):
        handle = MagicMock()
        handle.request_id = "req-9"
        handle.get = AsyncMock(return_value={"video": {"url": "https://fal.media/v.mp4"}})
        transport = FalTransport(client=self._client(AsyncMock(return_value=handle)), guard=fast_guard)

        output, request_id = await transport.run("fal-ai/sadtalker", {"a": 1})

        assert output["video"]["url"] == "https://fal.media/v.mp4"
        assert request_id == "req-9"

    @pytest.mark.asyncio
    async def test_server_error_retried_then_failed(self, fast_guard):
        submit = AsyncMock(side_effect=_http_error(503, "overloaded"))
        transport = FalTransport(client=self._client(submit), guard=fast_guard)

        with pytest.raises(GenerationFailed) as exc_info:
            await transport.run("fal-ai/sadtalker", {})

        assert submit.call_count == 2
        assert exc_info.value.http_status == 503
        assert exc_info.value.provider_message == "overloaded"

    @pytest.mark.asyncio
    async def test_timeout_retried(self, fast_guard):
        submit = AsyncMock(side_effect=httpx.ReadTimeout("timed out"))
        transport = FalTransport(client=self._client(submit), guard=fast_guard)

        with pytest.raises(GenerationFailed):
            await transport.run("fal-ai/sadtalker", {})

        assert submit.call_count == 2

    @pytest.mark.asyncio
    async def test_quota_not_retried(self, fast_guard):
        submit = AsyncMock(side_effect=_http_error(429))
        transport = FalTransport(client=self._client(submit), guard=fast_guard)

        with pytest.raises(QuotaExceededError):
            await transport.run("fal-ai/sadtalker", {})

        assert submit.call_count == 1

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, fast_guard):
        submit = AsyncMock(side_effect=FalClientError("Unprocessable image"))
        transport = FalTransport(client=self._client(submit), guard=fast_guard)

        with pytest.raises(GenerationFailed) as exc_info:
            await transport.run("fal-ai/sadtalker", {})

        assert submit.call_count == 1
        assert "Unprocessable image" in exc_info.value.provider_message
