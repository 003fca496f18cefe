"""Typed routing table.

The routing table describes which providers exist, what each supports, and
the per-capability provider order. It is parsed once from a JSON file or a
plain dict into frozen dataclasses; the rest of the code only ever sees the
typed structures.

Expected shape::

    {
      "version": "1.0",
      "global_settings": {"max_retries": 3, "log_level": "warn", ...},
      "ai_providers": {
        "openai": {
          "enabled": true,
          "display_name": "OpenAI",
          "capabilities": ["text_generation", "image_generation"],
          "api_settings": {"base_url": "...", "required_env_keys": ["OPENAI_API_KEY"]},
          "models": {"text_generation": ["gpt-4o-mini", "gpt-4o"]},
          "defaults": {"text_generation": "gpt-4o-mini"},
          "voices": ["alloy"],
          "model_prefixes": ["gpt-", "dall-e"],
          "endpoints": {"chat": "/chat/completions"}
        }
      },
      "capability_preferences": {
        "text_generation": {"primary": "openai", "fallbacks": ["google"]}
      }
    }
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.core.capability import Capability
from src.core.exceptions import ConfigurationLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GlobalSettings:
    max_retries: int = 3
    retry_delay_seconds: int = 1
    tts_cache_enabled: bool = True
    tts_cache_duration_hours: int = 24
    log_level: str = "warn"


@dataclass(frozen=True)
class ApiSettings:
    base_url: str = ""
    version: str = "v1"
    authentication_type: str = "bearer_token"
    required_env_keys: tuple[str, ...] = ()


@dataclass(frozen=True)
class RateLimits:
    requests_per_minute: int = 1000
    tokens_per_minute: int = 100000


@dataclass(frozen=True)
class ProviderConfig:
    """Static description of one configured provider."""

    provider_id: str
    enabled: bool
    display_name: str
    description: str = ""
    capabilities: tuple[Capability, ...] = ()
    api_settings: ApiSettings = field(default_factory=ApiSettings)
    models: dict[Capability, tuple[str, ...]] = field(default_factory=dict)
    defaults: dict[Capability, str] = field(default_factory=dict)
    voices: tuple[str, ...] = ()
    rate_limits: RateLimits = field(default_factory=RateLimits)
    model_prefixes: tuple[str, ...] = ()
    endpoints: dict[str, str] = field(default_factory=dict)

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def models_for(self, capability: Capability) -> tuple[str, ...]:
        return self.models.get(capability, ())

    def default_model(self, capability: Capability) -> str | None:
        return self.defaults.get(capability)

    @property
    def default_voice(self) -> str | None:
        return self.voices[0] if self.voices else None

    def endpoint_url(self, endpoint_key: str) -> str:
        """Join base_url with a named endpoint path.

        Raises:
            ConfigurationLoadError: If the endpoint is not configured
        """
        endpoint = self.endpoints.get(endpoint_key)
        if not endpoint:
            raise ConfigurationLoadError(
                f'Endpoint "{endpoint_key}" not configured for provider {self.provider_id}'
            )
        return self.api_settings.base_url.rstrip("/") + endpoint

    def matches_model(self, model: str) -> bool:
        return any(model.startswith(prefix) for prefix in self.model_prefixes)


@dataclass(frozen=True)
class CapabilityPreference:
    primary: str
    fallbacks: tuple[str, ...] = ()

    @property
    def ordered(self) -> tuple[str, ...]:
        return (self.primary, *self.fallbacks)


@dataclass(frozen=True)
class RoutingTable:
    """Resolved routing configuration consumed by the orchestrator."""

    providers: dict[str, ProviderConfig]
    capability_preferences: dict[Capability, CapabilityPreference]
    global_settings: GlobalSettings = field(default_factory=GlobalSettings)
    version: str = "1.0"

    @property
    def enabled_providers(self) -> dict[str, ProviderConfig]:
        return {pid: cfg for pid, cfg in self.providers.items() if cfg.enabled}

    @classmethod
    def from_dict(cls, data: Any, source: str = "<dict>") -> RoutingTable:
        """Validate and convert a raw mapping.

        Raises:
            ConfigurationLoadError: If required sections are missing or malformed
        """
        if not isinstance(data, Mapping):
            raise ConfigurationLoadError("routing table root must be an object", source)

        raw_providers = data.get("ai_providers")
        if not isinstance(raw_providers, Mapping) or not raw_providers:
            raise ConfigurationLoadError("'ai_providers' section is missing or empty", source)

        providers = {
            str(pid): _parse_provider(str(pid), raw, source) for pid, raw in raw_providers.items()
        }

        raw_prefs = data.get("capability_preferences") or {}
        if not isinstance(raw_prefs, Mapping):
            raise ConfigurationLoadError("'capability_preferences' must be an object", source)
        preferences: dict[Capability, CapabilityPreference] = {}
        for cap_id, raw in raw_prefs.items():
            capability = Capability.from_identifier(str(cap_id))
            if capability is None:
                logger.warning("Ignoring preference for unknown capability %r", cap_id)
                continue
            preferences[capability] = _parse_preference(capability, raw, providers, source)

        return cls(
            providers=providers,
            capability_preferences=preferences,
            global_settings=_parse_global_settings(data.get("global_settings"), source),
            version=str(data.get("version", "1.0")),
        )


def load_routing_table(path: Path | str | None = None) -> RoutingTable:
    """Load the routing table from a JSON file, or the built-in table if path is None.

    Raises:
        ConfigurationLoadError: If the file is missing, unreadable or invalid
    """
    if path is None:
        return RoutingTable.from_dict(DEFAULT_ROUTING_TABLE, source="<built-in>")

    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationLoadError("file not found", str(path)) from e
    except json.JSONDecodeError as e:
        raise ConfigurationLoadError(f"invalid JSON: {e}", str(path)) from e
    except OSError as e:
        raise ConfigurationLoadError(f"cannot read file: {e}", str(path)) from e

    return RoutingTable.from_dict(data, source=str(path))


def _require_mapping(raw: Any, what: str, source: str) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationLoadError(f"{what} must be an object", source)
    return raw


def _string_tuple(raw: Any, what: str, source: str) -> tuple[str, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list) or not all(isinstance(x, str) for x in raw):
        raise ConfigurationLoadError(f"{what} must be a list of strings", source)
    return tuple(raw)


def _parse_global_settings(raw: Any, source: str) -> GlobalSettings:
    data = _require_mapping(raw, "'global_settings'", source)
    try:
        return GlobalSettings(
            max_retries=int(data.get("max_retries", 3)),
            retry_delay_seconds=int(data.get("retry_delay_seconds", 1)),
            tts_cache_enabled=bool(data.get("tts_cache_enabled", True)),
            tts_cache_duration_hours=int(data.get("tts_cache_duration_hours", 24)),
            log_level=str(data.get("log_level", "warn")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationLoadError(f"invalid global_settings: {e}", source) from e


def _parse_capability_map(
    raw: Any, what: str, source: str, parse_value: Any
) -> dict[Capability, Any]:
    result: dict[Capability, Any] = {}
    for cap_id, value in _require_mapping(raw, what, source).items():
        capability = Capability.from_identifier(str(cap_id))
        if capability is None:
            logger.warning("Ignoring unknown capability %r in %s", cap_id, what)
            continue
        result[capability] = parse_value(value)
    return result


def _parse_provider(provider_id: str, raw: Any, source: str) -> ProviderConfig:
    data = _require_mapping(raw, f"provider '{provider_id}'", source)
    where = f"provider '{provider_id}'"

    capabilities: list[Capability] = []
    for cap_id in _string_tuple(data.get("capabilities"), f"{where} capabilities", source):
        capability = Capability.from_identifier(cap_id)
        if capability is None:
            logger.warning("Ignoring unknown capability %r for %s", cap_id, provider_id)
            continue
        capabilities.append(capability)

    api = _require_mapping(data.get("api_settings"), f"{where} api_settings", source)
    limits = _require_mapping(data.get("rate_limits"), f"{where} rate_limits", source)
    endpoints = _require_mapping(data.get("endpoints"), f"{where} endpoints", source)

    try:
        return ProviderConfig(
            provider_id=provider_id,
            enabled=bool(data.get("enabled", True)),
            display_name=str(data.get("display_name", provider_id)),
            description=str(data.get("description", "")),
            capabilities=tuple(capabilities),
            api_settings=ApiSettings(
                base_url=str(api.get("base_url", "")),
                version=str(api.get("version", "v1")),
                authentication_type=str(api.get("authentication_type", "bearer_token")),
                required_env_keys=_string_tuple(
                    api.get("required_env_keys"), f"{where} required_env_keys", source
                ),
            ),
            models=_parse_capability_map(
                data.get("models"),
                f"{where} models",
                source,
                lambda v: _string_tuple(v, f"{where} models", source),
            ),
            defaults=_parse_capability_map(data.get("defaults"), f"{where} defaults", source, str),
            voices=_string_tuple(data.get("voices"), f"{where} voices", source),
            rate_limits=RateLimits(
                requests_per_minute=int(limits.get("requests_per_minute", 1000)),
                tokens_per_minute=int(limits.get("tokens_per_minute", 100000)),
            ),
            model_prefixes=_string_tuple(
                data.get("model_prefixes"), f"{where} model_prefixes", source
            ),
            endpoints={str(k): str(v) for k, v in endpoints.items()},
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationLoadError(f"invalid {where}: {e}", source) from e


def _parse_preference(
    capability: Capability,
    raw: Any,
    providers: Mapping[str, ProviderConfig],
    source: str,
) -> CapabilityPreference:
    data = _require_mapping(raw, f"preference '{capability.value}'", source)
    primary = data.get("primary")
    if not isinstance(primary, str) or not primary:
        raise ConfigurationLoadError(
            f"preference '{capability.value}' needs a 'primary' provider", source
        )
    if primary not in providers:
        raise ConfigurationLoadError(
            f"preference '{capability.value}' names unknown provider '{primary}'", source
        )
    fallbacks = _string_tuple(
        data.get("fallbacks"), f"preference '{capability.value}' fallbacks", source
    )
    for fallback in fallbacks:
        if fallback not in providers:
            logger.warning(
                "Fallback provider %r for %s is not configured", fallback, capability.value
            )
    return CapabilityPreference(primary=primary, fallbacks=fallbacks)


DEFAULT_ROUTING_TABLE: dict[str, Any] = {
    "version": "1.0",
    "global_settings": {
        "max_retries": 3,
        "retry_delay_seconds": 1,
        "tts_cache_enabled": True,
        "tts_cache_duration_hours": 24,
        "log_level": "warn",
    },
    "ai_providers": {
        "openai": {
            "enabled": True,
            "display_name": "OpenAI",
            "description": "GPT chat, DALL-E images, TTS and Whisper transcription",
            "capabilities": [
                "text_generation",
                "image_generation",
                "image_analysis",
                "audio_generation",
                "audio_transcription",
            ],
            "api_settings": {
                "base_url": "https://api.openai.com/v1",
                "version": "v1",
                "authentication_type": "bearer_token",
                "required_env_keys": ["OPENAI_API_KEY"],
            },
            "models": {
                "text_generation": ["gpt-4o-mini", "gpt-4o"],
                "image_generation": ["gpt-image-1", "dall-e-3"],
                "image_analysis": ["gpt-4o-mini", "gpt-4o"],
                "audio_generation": ["gpt-4o-mini-tts", "tts-1"],
                "audio_transcription": ["whisper-1"],
            },
            "defaults": {
                "text_generation": "gpt-4o-mini",
                "image_generation": "gpt-image-1",
                "image_analysis": "gpt-4o-mini",
                "audio_generation": "gpt-4o-mini-tts",
                "audio_transcription": "whisper-1",
            },
            "voices": ["alloy", "echo", "fable", "nova", "onyx", "shimmer"],
            "model_prefixes": ["gpt-", "dall-e", "tts-", "whisper", "o1", "o3"],
            "endpoints": {
                "chat": "/chat/completions",
                "models": "/models",
                "images": "/images/generations",
                "audio_speech": "/audio/speech",
                "audio_transcriptions": "/audio/transcriptions",
            },
        },
        "google": {
            "enabled": True,
            "display_name": "Google Gemini",
            "description": "Gemini text and multimodal models",
            "capabilities": ["text_generation", "image_analysis", "image_generation"],
            "api_settings": {
                "base_url": "https://generativelanguage.googleapis.com/v1beta",
                "version": "v1beta",
                "authentication_type": "api_key_header",
                "required_env_keys": ["GEMINI_API_KEY"],
            },
            "models": {
                "text_generation": ["gemini-2.5-flash", "gemini-2.5-pro"],
                "image_analysis": ["gemini-2.5-flash"],
                "image_generation": ["gemini-2.5-flash-image"],
            },
            "defaults": {
                "text_generation": "gemini-2.5-flash",
                "image_analysis": "gemini-2.5-flash",
                "image_generation": "gemini-2.5-flash-image",
            },
            "model_prefixes": ["gemini-", "imagen-"],
            "endpoints": {
                "chat": "/models",
                "models": "/models",
            },
        },
    },
    "capability_preferences": {
        "text_generation": {"primary": "openai", "fallbacks": ["google"]},
        "image_generation": {"primary": "google", "fallbacks": ["openai"]},
        "image_analysis": {"primary": "google", "fallbacks": ["openai"]},
        "audio_generation": {"primary": "openai", "fallbacks": []},
        "audio_transcription": {"primary": "openai", "fallbacks": []},
    },
}
