import pytest

from src.core.capability import Capability
from src.core.models import (
    AdditionalParams,
    AiAudio,
    AiImage,
    AIResponse,
    AudioParams,
    ImageParams,
    ProviderSummary,
    SystemPrompt,
    VoiceInfo,
)


@pytest.mark.unit
class TestSystemPrompt:
    def test_with_user_message_appends_turn(self):
        prompt = SystemPrompt(history=({"role": "assistant", "content": "hi"},))
        extended = prompt.with_user_message("hello")

        assert extended.history[-1] == {"role": "user", "content": "hello"}
        assert len(prompt.history) == 1
        assert extended.last_user_message == "hello"

    def test_last_user_message_empty_without_user_turn(self):
        assert SystemPrompt().last_user_message == ""

    def test_system_text_combines_instructions_and_context(self):
        prompt = SystemPrompt(context="You are terse.", instructions={"tone": "dry"})
        text = prompt.system_text()
        assert '"tone": "dry"' in text
        assert text.endswith("You are terse.")
        assert SystemPrompt().system_text() == ""


@pytest.mark.unit
class TestParams:
    def test_audio_params_from_dict_aliases(self):
        params = AudioParams.from_dict({"speed": "1.5", "audioFormat": "wav", "temperature": 0.3})
        assert params.speed == 1.5
        assert params.audio_format == "wav"
        assert params.temperature == 0.3

    def test_audio_params_defaults(self):
        assert AudioParams.from_dict(None) == AudioParams()
        assert AudioParams().audio_format == "m4a"

    def test_image_params_from_dict(self):
        assert ImageParams.from_dict({"aspectRatio": "16:9"}).aspect_ratio == "16:9"

    def test_additional_params_constructors(self):
        assert AdditionalParams.for_audio(speed=2.0).audio.speed == 2.0
        assert AdditionalParams.for_image(quality="high").image.quality == "high"


@pytest.mark.unit
class TestResponseSerialization:
    def test_ai_response_json_round_trip(self):
        response = AIResponse(
            text="done",
            provider="openai",
            image=AiImage(url="/tmp/a.png", prompt="a fox", created_at_ms=1),
            audio=AiAudio(url="/tmp/a.m4a", transcript="done", base64="AAAA", created_at_ms=2),
        )
        assert AIResponse.from_json(response.to_json()) == response

    def test_from_json_tolerates_missing_media(self):
        response = AIResponse.from_json({"text": "hi", "provider": "google"})
        assert response.image is None
        assert response.audio is None

    def test_voice_and_summary_dicts(self):
        voice = VoiceInfo(id="nova", name="Nova")
        assert VoiceInfo.from_dict(voice.to_dict()) == voice

        summary = ProviderSummary(
            id="openai",
            display_name="OpenAI",
            description="",
            capabilities=(Capability.TEXT_GENERATION,),
            enabled=True,
        )
        assert summary.to_dict()["capabilities"] == ["text_generation"]
