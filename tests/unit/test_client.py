"""Tests for the per-capability AIClient shortcuts."""

import base64
from dataclasses import replace
from pathlib import Path

import pytest
import pytest_asyncio

from src.client import TRANSCRIBE_MESSAGE, AIClient
from src.core.capability import Capability
from src.core.models import (
    AdditionalParams,
    AudioParams,
    ImageParams,
    ProviderResponse,
    SystemPrompt,
)
from src.core.preferences import InMemoryPreferenceStore
from src.orchestrator import AIProviderManager
from tests.fixtures.fake_providers import fake_routing_table
from tests.fixtures.mock_http import AUDIO_BYTES, PNG_BASE64

AUDIO_BASE64 = base64.b64encode(AUDIO_BYTES).decode("ascii")


def _table_with_analysis():
    """Fake table where alpha also analyzes images and transcribes audio."""
    table = fake_routing_table()
    alpha = table.providers["alpha"]
    alpha = replace(
        alpha,
        capabilities=(
            *alpha.capabilities,
            Capability.IMAGE_ANALYSIS,
            Capability.AUDIO_TRANSCRIPTION,
        ),
    )
    return replace(table, providers={**table.providers, "alpha": alpha})


@pytest_asyncio.fixture
async def manager(test_settings, fake_registry, fast_retry_executor):
    manager = AIProviderManager(
        test_settings,
        routing_table=_table_with_analysis(),
        registry=fake_registry,
        preferences=InMemoryPreferenceStore(),
        credentials={},
        retry_executor=fast_retry_executor,
    )
    yield manager
    await manager.dispose()


@pytest.fixture
def ai(manager):
    return AIClient(manager)


@pytest.mark.unit
@pytest.mark.asyncio
class TestAIClient:
    async def test_text(self, ai, scripts):
        scripts["alpha"].push(ProviderResponse(text="Hello"))

        response = await ai.text("Hi", history=[{"role": "assistant", "content": "Welcome"}])

        assert response.text == "Hello"
        call = scripts["alpha"].calls[0]
        assert call.capability is Capability.TEXT_GENERATION
        assert call.last_user_message == "Hi"
        assert [turn["content"] for turn in call.prompt.history] == ["Welcome", "Hi"]

    async def test_text_keeps_given_system_prompt(self, ai, scripts):
        await ai.text("Hi", SystemPrompt(context="You are terse"))

        assert scripts["alpha"].calls[0].prompt.context == "You are terse"

    async def test_image_passes_options_and_saves(self, ai, scripts):
        scripts["alpha"].push(ProviderResponse(text="", image_base64=PNG_BASE64))

        response = await ai.image(
            "A fox", image=ImageParams(aspect_ratio="16:9"), save_to_cache=True
        )

        call = scripts["alpha"].calls[0]
        assert call.capability is Capability.IMAGE_GENERATION
        assert call.additional_params.image.aspect_ratio == "16:9"
        assert call.prompt.context == {"task": "image_generation"}
        assert Path(response.image.url).read_bytes() == base64.b64decode(PNG_BASE64)

    async def test_vision_defaults_to_jpeg(self, ai, scripts):
        await ai.vision(PNG_BASE64, "What is this?")

        call = scripts["alpha"].calls[0]
        assert call.capability is Capability.IMAGE_ANALYSIS
        assert call.image_base64 == PNG_BASE64
        assert call.image_mime_type == "image/jpeg"
        assert call.last_user_message == "What is this?"

    async def test_speak_builds_audio_request(self, ai, scripts):
        scripts["alpha"].push(ProviderResponse(text="", audio_base64=AUDIO_BASE64))

        response = await ai.speak("Read this", AudioParams(speed=1.25, language="es"))

        call = scripts["alpha"].calls[0]
        assert call.capability is Capability.AUDIO_GENERATION
        assert call.additional_params.audio.speed == 1.25
        assert call.prompt.context == {"task": "audio_generation", "tts": True}
        assert call.prompt.instructions == {"speed": 1.25, "language": "es"}
        assert response.audio.base64 == AUDIO_BASE64

    async def test_spoken_clip_is_found_in_cache(self, ai, scripts):
        scripts["alpha"].push(ProviderResponse(text="", audio_base64=AUDIO_BASE64))
        response = await ai.speak("Read this", AudioParams(speed=1.25, language="es"))

        cached = ai.get_cached_audio_file(
            "Read this", "aria", "es", "alpha", speed=1.25, pitch=0.0, audio_format="m4a"
        )

        assert cached == Path(response.audio.url)
        assert cached.read_bytes() == AUDIO_BYTES
        assert ai.get_cached_audio_file("Read this", "bram", "es", "alpha", speed=1.25) is None

    async def test_listen_sends_audio_with_instructions(self, ai, scripts):
        scripts["alpha"].push(ProviderResponse(text="hola"))

        response = await ai.listen(
            AUDIO_BASE64, audio_mime_type="audio/wav", instructions={"language": "es-ES"}
        )

        assert response.text == "hola"
        call = scripts["alpha"].calls[0]
        assert call.capability is Capability.AUDIO_TRANSCRIPTION
        assert call.last_user_message == TRANSCRIBE_MESSAGE
        assert call.image_base64 == AUDIO_BASE64
        assert call.image_mime_type == "audio/wav"
        assert call.prompt.instructions["language"] == "es-ES"
        assert call.prompt.instructions["format"] == "simple"

    async def test_generate_forwards_everything(self, ai, scripts):
        params = AdditionalParams.for_audio(speed=0.8)

        await ai.generate(Capability.TEXT_GENERATION, "Hi", additional_params=params)

        call = scripts["alpha"].calls[0]
        assert call.capability is Capability.TEXT_GENERATION
        assert call.additional_params is params
