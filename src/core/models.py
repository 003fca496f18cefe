"""Request and response value types shared by providers and the orchestrator."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from src.core.capability import Capability


def _now_ms() -> int:
    return int(time.time() * 1000)


# === Request side ===


@dataclass(frozen=True)
class SystemPrompt:
    """Conversation context handed to a provider.

    Attributes:
        context: Free-form context (persona, user profile, ...)
        instructions: Structured instructions merged into the system message
        history: Prior turns as ``{"role": ..., "content": ...}`` dicts
        date_time: Reference time for the conversation
    """

    context: Any = None
    instructions: dict[str, Any] = field(default_factory=dict)
    history: tuple[dict[str, Any], ...] = ()
    date_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def with_user_message(self, message: str) -> SystemPrompt:
        return replace(self, history=(*self.history, {"role": "user", "content": message}))

    @property
    def last_user_message(self) -> str:
        for turn in reversed(self.history):
            if turn.get("role") == "user":
                content = turn.get("content")
                return content if isinstance(content, str) else ""
        return ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "date_time": self.date_time.isoformat(),
            "instructions": self.instructions,
            "history": list(self.history),
        }

    def system_text(self) -> str:
        """Render context and instructions as a single system message."""
        parts: list[str] = []
        if self.instructions:
            parts.append(json.dumps(self.instructions, ensure_ascii=False, default=str))
        if self.context is not None:
            if isinstance(self.context, str):
                parts.append(self.context)
            else:
                parts.append(json.dumps(self.context, ensure_ascii=False, default=str))
        return "\n\n".join(parts)


@dataclass(frozen=True)
class AudioParams:
    """Speech synthesis options.

    ``temperature`` doubles as pitch in the audio cache fingerprint.
    """

    speed: float = 1.0
    audio_format: str = "m4a"
    language: str | None = None
    accent: str | None = None
    temperature: float | None = None
    emotion: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AudioParams:
        if not data:
            return cls()
        temperature = data.get("temperature")
        return cls(
            speed=float(data.get("speed", 1.0)),
            audio_format=str(
                data.get("response_format")
                or data.get("audio_format")
                or data.get("audioFormat")
                or "m4a"
            ),
            language=data.get("language"),
            accent=data.get("accent"),
            temperature=float(temperature) if temperature is not None else None,
            emotion=data.get("emotion"),
        )


@dataclass(frozen=True)
class ImageParams:
    aspect_ratio: str | None = None
    format: str | None = None
    background: str | None = None
    fidelity: str | None = None
    quality: str | None = None
    seed: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImageParams:
        if not data:
            return cls()
        return cls(
            aspect_ratio=data.get("aspect_ratio") or data.get("aspectRatio"),
            format=data.get("format"),
            background=data.get("background"),
            fidelity=data.get("fidelity"),
            quality=data.get("quality"),
            seed=data.get("seed"),
        )


@dataclass(frozen=True)
class AdditionalParams:
    """Capability-specific options; at most one of audio/image is usually set."""

    audio: AudioParams | None = None
    image: ImageParams | None = None

    @classmethod
    def for_audio(cls, **kwargs: Any) -> AdditionalParams:
        return cls(audio=AudioParams(**kwargs))

    @classmethod
    def for_image(cls, **kwargs: Any) -> AdditionalParams:
        return cls(image=ImageParams(**kwargs))


@dataclass(frozen=True)
class VoiceInfo:
    id: str
    name: str
    language: str | None = None
    gender: str | None = None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "language": self.language,
            "gender": self.gender,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VoiceInfo:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            language=data.get("language"),
            gender=data.get("gender"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class ProviderSummary:
    """Provider metadata exposed to callers building selection UIs."""

    id: str
    display_name: str
    description: str
    capabilities: tuple[Capability, ...]
    enabled: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "description": self.description,
            "capabilities": [c.value for c in self.capabilities],
            "enabled": self.enabled,
        }


# === Response side ===


@dataclass(frozen=True)
class ProviderResponse:
    """Raw result every provider returns, before media persistence."""

    text: str
    seed: str = ""
    prompt: str = ""
    image_base64: str | None = None
    audio_base64: str | None = None
    # Container of audio_base64, when the provider reports one
    audio_format: str | None = None

    @property
    def has_image(self) -> bool:
        return bool(self.image_base64)

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_base64)


@dataclass(frozen=True)
class AiImage:
    url: str | None = None
    prompt: str | None = None
    base64: str | None = None
    created_at_ms: int = field(default_factory=_now_ms)

    def to_json(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "prompt": self.prompt,
            "base64": self.base64,
            "created_at_ms": self.created_at_ms,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AiImage:
        return cls(
            url=data.get("url"),
            prompt=data.get("prompt"),
            base64=data.get("base64"),
            created_at_ms=int(data.get("created_at_ms") or _now_ms()),
        )


@dataclass(frozen=True)
class AiAudio:
    url: str | None = None
    transcript: str | None = None
    duration_ms: int | None = None
    base64: str | None = None
    created_at_ms: int = field(default_factory=_now_ms)

    def to_json(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "transcript": self.transcript,
            "duration_ms": self.duration_ms,
            "base64": self.base64,
            "created_at_ms": self.created_at_ms,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AiAudio:
        duration = data.get("duration_ms")
        return cls(
            url=data.get("url"),
            transcript=data.get("transcript"),
            duration_ms=int(duration) if duration is not None else None,
            base64=data.get("base64"),
            created_at_ms=int(data.get("created_at_ms") or _now_ms()),
        )


@dataclass(frozen=True)
class AIResponse:
    """Unified result of a send_message call."""

    text: str
    provider: str
    image: AiImage | None = None
    audio: AiAudio | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "provider": self.provider,
            "image": self.image.to_json() if self.image else None,
            "audio": self.audio.to_json() if self.audio else None,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AIResponse:
        image = data.get("image")
        audio = data.get("audio")
        return cls(
            text=data.get("text") or "",
            provider=data.get("provider") or "",
            image=AiImage.from_json(image) if image else None,
            audio=AiAudio.from_json(audio) if audio else None,
        )
