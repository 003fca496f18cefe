"""
Repository for per-capability user selections.

The orchestrator depends only on the PreferenceStore interface; the
filesystem implementation keeps everything in one JSON document:

    {
      "capabilities": {
        "audio_generation": {
          "provider": "openai",
          "model": "gpt-4o-mini-tts",
          "voice": "nova",
          "last_updated": "2025-01-01T12:00:00+00:00"
        }
      },
      "voices": {"openai": "nova"}
    }
"""

from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.core.capability import Capability
from src.core.exceptions import PreferenceStorageError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserCapabilityConfig:
    """A caller's explicit provider/model/voice choice for one capability."""

    provider: str
    model: str
    voice: str | None = None
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "provider": self.provider,
            "model": self.model,
            "last_updated": self.last_updated.isoformat(),
        }
        if self.voice is not None:
            data["voice"] = self.voice
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserCapabilityConfig:
        """Build from a stored dict.

        Raises:
            KeyError, TypeError, ValueError: If required fields are missing or malformed
        """
        provider = data["provider"]
        model = data["model"]
        if not isinstance(provider, str) or not isinstance(model, str):
            raise TypeError("provider and model must be strings")
        voice = data.get("voice")
        raw_ts = data.get("last_updated")
        last_updated = (
            datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else datetime.now(timezone.utc)
        )
        return cls(
            provider=provider,
            model=model,
            voice=voice if isinstance(voice, str) else None,
            last_updated=last_updated,
        )


class PreferenceStore(ABC):
    """Durable storage for user capability selections."""

    @abstractmethod
    def get_capability_config(self, capability: Capability) -> UserCapabilityConfig | None:
        """Return the saved selection for a capability, or None."""

    @abstractmethod
    def set_capability_config(self, capability: Capability, config: UserCapabilityConfig) -> None:
        """Create or overwrite the selection for a capability."""

    @abstractmethod
    def get_voice(self, provider_id: str) -> str | None:
        """Return the voice saved for a provider, or None."""

    @abstractmethod
    def set_voice(self, provider_id: str, voice: str) -> None:
        """Save the preferred voice for a provider."""

    @abstractmethod
    def clear(self) -> None:
        """Forget every stored selection."""


class InMemoryPreferenceStore(PreferenceStore):
    """Process-local store, used by tests and short-lived scripts."""

    def __init__(self) -> None:
        self._capabilities: dict[Capability, UserCapabilityConfig] = {}
        self._voices: dict[str, str] = {}

    def get_capability_config(self, capability: Capability) -> UserCapabilityConfig | None:
        return self._capabilities.get(capability)

    def set_capability_config(self, capability: Capability, config: UserCapabilityConfig) -> None:
        self._capabilities[capability] = config

    def get_voice(self, provider_id: str) -> str | None:
        return self._voices.get(provider_id)

    def set_voice(self, provider_id: str, voice: str) -> None:
        self._voices[provider_id] = voice

    def clear(self) -> None:
        self._capabilities.clear()
        self._voices.clear()


class FileSystemPreferenceStore(PreferenceStore):
    """JSON-file backed store.

    A missing or corrupt file reads as "no preferences"; the next write
    replaces it. Writes go through a temporary file and an atomic rename.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.Lock()

    def _read(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, OSError) as e:
            _logger.warning("Ignoring unreadable preferences file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            _logger.warning("Ignoring malformed preferences file %s", self.path)
            return {}
        return data

    def _write(self, data: dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError as e:
            _logger.error("Failed to write preferences file %s: %s", self.path, e)
            raise PreferenceStorageError(f"Cannot write preferences file: {e}") from e

    def get_capability_config(self, capability: Capability) -> UserCapabilityConfig | None:
        with self._lock:
            raw = self._read().get("capabilities", {})
        entry = raw.get(capability.value) if isinstance(raw, dict) else None
        if not isinstance(entry, dict):
            return None
        try:
            return UserCapabilityConfig.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            _logger.warning("Ignoring malformed preference for %s: %s", capability.value, e)
            return None

    def set_capability_config(self, capability: Capability, config: UserCapabilityConfig) -> None:
        with self._lock:
            data = self._read()
            capabilities = data.get("capabilities")
            if not isinstance(capabilities, dict):
                capabilities = {}
            capabilities[capability.value] = config.to_dict()
            data["capabilities"] = capabilities
            self._write(data)

    def get_voice(self, provider_id: str) -> str | None:
        with self._lock:
            voices = self._read().get("voices", {})
        voice = voices.get(provider_id) if isinstance(voices, dict) else None
        return voice if isinstance(voice, str) else None

    def set_voice(self, provider_id: str, voice: str) -> None:
        with self._lock:
            data = self._read()
            voices = data.get("voices")
            if not isinstance(voices, dict):
                voices = {}
            voices[provider_id] = voice
            data["voices"] = voices
            self._write(data)

    def clear(self) -> None:
        with self._lock:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as e:
                raise PreferenceStorageError(f"Cannot remove preferences file: {e}") from e
