"""Capability-named shortcuts over AIProviderManager.

``AIClient`` picks the capability for each call and builds the prompt and
parameters that capability expects. Everything else, including lazy
initialization and fallback, happens in the manager it wraps::

    async with AIProviderManager() as manager:
        ai = AIClient(manager)
        reply = await ai.text("Summarize this paragraph ...")
        clip = await ai.speak(reply.text, AudioParams(speed=1.1))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from src.core.capability import Capability
from src.core.models import AdditionalParams, AIResponse, AudioParams, ImageParams, SystemPrompt
from src.orchestrator import AIProviderManager

logger = logging.getLogger(__name__)

TRANSCRIBE_MESSAGE = "Transcribe the provided audio according to the given instructions"

DEFAULT_TRANSCRIBE_INSTRUCTIONS: dict[str, Any] = {
    "language": "auto",
    "format": "simple",
    "include_punctuation": True,
    "include_timestamps": False,
}


def _speech_instructions(audio: AudioParams) -> dict[str, Any]:
    instructions: dict[str, Any] = {"speed": audio.speed}
    for name in ("language", "accent", "emotion"):
        value = getattr(audio, name)
        if value is not None:
            instructions[name] = value
    return instructions


class AIClient:
    """Per-capability entry points: text, image, vision, speak, listen and generate."""

    def __init__(self, manager: AIProviderManager) -> None:
        self.manager = manager

    async def text(
        self,
        message: str,
        system_prompt: SystemPrompt | None = None,
        *,
        history: Sequence[dict[str, Any]] | None = None,
    ) -> AIResponse:
        logger.debug("text(): %d chars", len(message))
        return await self.manager.send_message(
            Capability.TEXT_GENERATION,
            message,
            history=history,
            system_prompt=system_prompt,
        )

    async def image(
        self,
        prompt: str,
        system_prompt: SystemPrompt | None = None,
        *,
        image: ImageParams | None = None,
        save_to_cache: bool = False,
    ) -> AIResponse:
        """Generate an image.

        With ``save_to_cache`` the image is written to disk and the response
        carries its path instead of the base64 payload.
        """
        logger.debug("image(): %d chars, save_to_cache=%s", len(prompt), save_to_cache)
        return await self.manager.send_message(
            Capability.IMAGE_GENERATION,
            prompt,
            additional_params=AdditionalParams(image=image) if image else None,
            system_prompt=system_prompt
            or SystemPrompt(context={"task": "image_generation"}),
            save_to_cache=save_to_cache,
        )

    async def vision(
        self,
        image_base64: str,
        prompt: str,
        system_prompt: SystemPrompt | None = None,
        *,
        image_mime_type: str = "image/jpeg",
    ) -> AIResponse:
        logger.debug("vision(): %d chars", len(prompt))
        return await self.manager.send_message(
            Capability.IMAGE_ANALYSIS,
            prompt,
            image_base64=image_base64,
            image_mime_type=image_mime_type,
            system_prompt=system_prompt,
        )

    async def speak(
        self,
        text: str,
        audio: AudioParams | None = None,
        *,
        instructions: dict[str, Any] | None = None,
    ) -> AIResponse:
        """Synthesize ``text``.

        The clip is always saved under its audio cache key, so repeating the
        same request is served from disk.
        """
        audio = audio or AudioParams()
        logger.debug("speak(): %d chars as %s", len(text), audio.audio_format)
        prompt = SystemPrompt(
            context={"task": "audio_generation", "tts": True},
            instructions=instructions if instructions is not None else _speech_instructions(audio),
        )
        return await self.manager.send_message(
            Capability.AUDIO_GENERATION,
            text,
            additional_params=AdditionalParams(audio=audio),
            system_prompt=prompt,
        )

    async def listen(
        self,
        audio_base64: str,
        *,
        audio_mime_type: str | None = None,
        instructions: dict[str, Any] | None = None,
    ) -> AIResponse:
        """Transcribe base64 audio. ``instructions`` override the defaults key by key."""
        logger.debug("listen(): transcribing audio")
        merged = {**DEFAULT_TRANSCRIBE_INSTRUCTIONS, **(instructions or {})}
        return await self.manager.send_message(
            Capability.AUDIO_TRANSCRIPTION,
            TRANSCRIBE_MESSAGE,
            image_base64=audio_base64,
            image_mime_type=audio_mime_type,
            system_prompt=SystemPrompt(
                context={"task": "audio_transcription"}, instructions=merged
            ),
        )

    async def generate(
        self,
        capability: Capability,
        message: str,
        system_prompt: SystemPrompt | None = None,
        *,
        image_base64: str | None = None,
        image_mime_type: str | None = None,
        additional_params: AdditionalParams | None = None,
        save_to_cache: bool = False,
    ) -> AIResponse:
        logger.debug("generate(): capability %s", capability.value)
        return await self.manager.send_message(
            capability,
            message,
            image_base64=image_base64,
            image_mime_type=image_mime_type,
            additional_params=additional_params,
            system_prompt=system_prompt,
            save_to_cache=save_to_cache,
        )

    def get_cached_audio_file(
        self,
        text: str,
        voice: str,
        language: str,
        provider: str,
        speed: float = 1.0,
        pitch: float = 0.0,
        audio_format: str = "m4a",
    ) -> Path | None:
        return self.manager.get_cached_audio_file(
            text, voice, language, provider, speed, pitch, audio_format
        )
