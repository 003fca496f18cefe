"""Google Gemini adapter (generateContent API)."""

from __future__ import annotations

import logging
from typing import Any

from src.core.capability import Capability
from src.core.exceptions import ProviderError
from src.core.models import AdditionalParams, ProviderResponse, SystemPrompt
from src.core.provider.base import HttpProviderAdapter

logger = logging.getLogger(__name__)

_ROLE_MAP = {"user": "user", "assistant": "model", "model": "model"}


class GoogleProvider(HttpProviderAdapter):
    def auth_headers(self, api_key: str) -> dict[str, str]:
        return {"x-goog-api-key": api_key}

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
        if capability in (Capability.AUDIO_GENERATION, Capability.AUDIO_TRANSCRIPTION):
            raise ProviderError(self.provider_id, f"{capability.value} is not supported")

        selected = (
            model
            or self.config.default_model(capability)
            or self.config.default_model(Capability.TEXT_GENERATION)
        )
        if not selected:
            raise ProviderError(self.provider_id, f"No model configured for {capability.value}")

        payload: dict[str, Any] = {
            "contents": self._contents(prompt, image_base64, image_mime_type),
        }
        system_text = prompt.system_text()
        if system_text:
            payload["systemInstruction"] = {"parts": [{"text": system_text}]}
        if capability is Capability.IMAGE_GENERATION:
            payload["generationConfig"] = {"responseModalities": ["TEXT", "IMAGE"]}
            image_params = additional_params.image if additional_params else None
            if image_params is not None and image_params.aspect_ratio:
                payload["generationConfig"]["imageConfig"] = {
                    "aspectRatio": image_params.aspect_ratio
                }

        url = f"{self.config.endpoint_url('chat')}/{selected}:generateContent"
        response = await self.request("POST", url, json=payload)
        return self._parse(response.json(), prompt)

    @staticmethod
    def _contents(
        prompt: SystemPrompt, image_base64: str | None, image_mime_type: str | None
    ) -> list[dict[str, Any]]:
        contents: list[dict[str, Any]] = []
        for turn in prompt.history:
            role = _ROLE_MAP.get(str(turn.get("role", "user")))
            if role is None:
                continue
            contents.append({"role": role, "parts": [{"text": str(turn.get("content", ""))}]})

        if image_base64 and contents and contents[-1]["role"] == "user":
            contents[-1]["parts"].append(
                {"inline_data": {"mime_type": image_mime_type or "image/jpeg", "data": image_base64}}
            )
        return contents

    def _parse(self, data: dict[str, Any], prompt: SystemPrompt) -> ProviderResponse:
        candidates = data.get("candidates") or []
        if not candidates:
            raise ProviderError(self.provider_id, "No candidates in response")
        parts = (candidates[0].get("content") or {}).get("parts") or []

        texts: list[str] = []
        image_base64: str | None = None
        for part in parts:
            if not isinstance(part, dict):
                continue
            if "text" in part:
                texts.append(part["text"])
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and image_base64 is None:
                image_base64 = inline.get("data")

        return ProviderResponse(
            text="".join(texts),
            seed=str(data.get("responseId", "")),
            prompt=prompt.last_user_message,
            image_base64=image_base64,
        )

    async def fetch_models_from_api(self) -> list[str] | None:
        try:
            response = await self.request("GET", self.config.endpoint_url("models"))
        except Exception as e:
            logger.warning("Could not list models for %s: %s", self.provider_id, e)
            return None
        names = [
            str(m["name"]).removeprefix("models/")
            for m in response.json().get("models", [])
            if isinstance(m, dict) and "name" in m
        ]
        return sorted(names)
