"""OpenAI adapter: chat completions, image generation, TTS and Whisper."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

from src.core.capability import Capability
from src.core.exceptions import ProviderError
from src.core.models import AdditionalParams, AudioParams, ProviderResponse, SystemPrompt
from src.core.provider.base import HttpProviderAdapter

logger = logging.getLogger(__name__)

# The speech endpoint has no m4a container; m4a requests get raw AAC (ADTS)
_SPEECH_FORMATS = {
    "m4a": "aac",
    "aac": "aac",
    "mp3": "mp3",
    "opus": "opus",
    "flac": "flac",
    "wav": "wav",
    "pcm": "pcm",
}

_IMAGE_SIZES = {"1:1": "1024x1024", "16:9": "1536x1024", "9:16": "1024x1536"}


class OpenAIProvider(HttpProviderAdapter):
    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _model_for(self, capability: Capability, model: str | None) -> str:
        selected = model or self.config.default_model(capability)
        if not selected:
            raise ProviderError(self.provider_id, f"No model configured for {capability.value}")
        return selected

    async def send_message(
        self,
        prompt: SystemPrompt,
        capability: Capability,
        model: str | None = None,
        image_base64: str | None = None,
        image_mime_type: str | None = None,
        voice: str | None = None,
        additional_params: AdditionalParams | None = None,
    ) -> ProviderResponse:
        if capability is Capability.IMAGE_GENERATION:
            return await self._generate_image(
                prompt, self._model_for(capability, model), additional_params
            )
        if capability is Capability.AUDIO_GENERATION:
            return await self._synthesize(
                prompt, self._model_for(capability, model), voice, additional_params
            )
        if capability is Capability.AUDIO_TRANSCRIPTION:
            if not image_base64:
                raise ProviderError(self.provider_id, "Transcription needs an audio attachment")
            return await self._transcribe(
                prompt, self._model_for(capability, model), image_base64, image_mime_type
            )
        chat_capability = (
            capability if self.config.default_model(capability) else Capability.TEXT_GENERATION
        )
        return await self._chat(
            prompt, self._model_for(chat_capability, model), image_base64, image_mime_type
        )

    def _chat_messages(
        self, prompt: SystemPrompt, image_base64: str | None, image_mime_type: str | None
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        system_text = prompt.system_text()
        if system_text:
            messages.append({"role": "system", "content": system_text})
        messages.extend(
            {"role": turn.get("role", "user"), "content": turn.get("content", "")}
            for turn in prompt.history
        )

        if image_base64 and messages and messages[-1]["role"] == "user":
            mime = image_mime_type or "image/jpeg"
            messages[-1] = {
                "role": "user",
                "content": [
                    {"type": "text", "text": messages[-1]["content"]},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime};base64,{image_base64}"},
                    },
                ],
            }
        return messages

    async def _chat(
        self,
        prompt: SystemPrompt,
        model: str,
        image_base64: str | None,
        image_mime_type: str | None,
    ) -> ProviderResponse:
        payload = {
            "model": model,
            "messages": self._chat_messages(prompt, image_base64, image_mime_type),
        }
        response = await self.request("POST", self.config.endpoint_url("chat"), json=payload)
        data = response.json()
        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.provider_id, f"Unexpected chat response: {e}") from e
        return ProviderResponse(text=text, seed=str(data.get("id", "")))

    async def _generate_image(
        self, prompt: SystemPrompt, model: str, additional_params: AdditionalParams | None
    ) -> ProviderResponse:
        image_params = additional_params.image if additional_params else None
        payload: dict[str, Any] = {"model": model, "prompt": prompt.last_user_message, "n": 1}
        if model.startswith("dall-e"):
            payload["response_format"] = "b64_json"
        if image_params is not None:
            if image_params.aspect_ratio in _IMAGE_SIZES:
                payload["size"] = _IMAGE_SIZES[image_params.aspect_ratio]
            if image_params.quality:
                payload["quality"] = image_params.quality
            if image_params.background:
                payload["background"] = image_params.background
            if image_params.format:
                payload["output_format"] = image_params.format

        response = await self.request("POST", self.config.endpoint_url("images"), json=payload)
        items = response.json().get("data") or []
        first = items[0] if items else {}
        return ProviderResponse(
            text=first.get("revised_prompt") or "",
            prompt=first.get("revised_prompt") or prompt.last_user_message,
            image_base64=first.get("b64_json"),
        )

    async def _synthesize(
        self,
        prompt: SystemPrompt,
        model: str,
        voice: str | None,
        additional_params: AdditionalParams | None,
    ) -> ProviderResponse:
        params = (additional_params.audio if additional_params else None) or AudioParams()
        payload: dict[str, Any] = {
            "model": model,
            "input": prompt.last_user_message,
            "voice": voice or self.config.default_voice or "alloy",
            "speed": params.speed,
            "response_format": _SPEECH_FORMATS.get(params.audio_format, "mp3"),
        }
        instructions = [p for p in (params.accent, params.emotion) if p]
        if instructions:
            payload["instructions"] = ". ".join(instructions)

        response = await self.request(
            "POST", self.config.endpoint_url("audio_speech"), json=payload
        )
        return ProviderResponse(
            text="Audio generated successfully",
            audio_base64=base64.b64encode(response.content).decode("ascii"),
            audio_format=payload["response_format"],
        )

    async def _transcribe(
        self,
        prompt: SystemPrompt,
        model: str,
        audio_base64: str,
        mime_type: str | None,
    ) -> ProviderResponse:
        try:
            audio_bytes = base64.b64decode(audio_base64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ProviderError(self.provider_id, f"Invalid audio payload: {e}") from e

        data = {"model": model}
        context_text = prompt.system_text()
        if context_text:
            data["prompt"] = context_text
        files = {"file": ("audio.wav", audio_bytes, mime_type or "audio/wav")}
        response = await self.request(
            "POST", self.config.endpoint_url("audio_transcriptions"), data=data, files=files
        )
        return ProviderResponse(text=response.json().get("text", ""))

    async def fetch_models_from_api(self) -> list[str] | None:
        try:
            response = await self.request("GET", self.config.endpoint_url("models"))
        except Exception as e:
            logger.warning("Could not list models for %s: %s", self.provider_id, e)
            return None
        models = [
            m["id"] for m in response.json().get("data", []) if isinstance(m, dict) and "id" in m
        ]
        return sorted(models)
