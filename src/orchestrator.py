"""AIProviderManager: the multi-provider request orchestrator.

The manager owns the provider adapters, caches and resilience services and
routes every request through an ordered list of candidate providers:

1. Resolve the candidate order (user override, primary, fallbacks).
2. For each candidate: serve from the on-disk audio cache or the in-memory
   response cache when possible, otherwise call the adapter through the
   RetryExecutor.
3. The first success wins. A failing provider is logged, recorded in the
   metrics and skipped. Only when every candidate failed does the caller
   see NoProviderAvailableError.

Nothing here is global: every collaborator is constructed by the manager
or injected through the constructor.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
import uuid
from collections.abc import Sequence
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from src.core.cache import CacheKey, PersistentCache, ResponseCache, audio_cache_key
from src.core.capability import Capability
from src.core.config.resolver import ConfigResolver
from src.core.config.routing import RoutingTable, load_routing_table
from src.core.config.settings import OrchestratorSettings, Settings
from src.core.error_types import classify_error
from src.core.exceptions import (
    ApiKeysExhaustedError,
    NoProviderAvailableError,
    NotInitializedError,
    RetryableProviderError,
)
from src.core.logging import correlation_context
from src.core.media import MediaPersistence
from src.core.models import (
    AdditionalParams,
    AiAudio,
    AiImage,
    AIResponse,
    AudioParams,
    ProviderResponse,
    ProviderSummary,
    SystemPrompt,
    VoiceInfo,
)
from src.core.monitoring import MonitoringService
from src.core.preferences import FileSystemPreferenceStore, PreferenceStore
from src.core.provider.api_key_rotator import (
    ApiKeyRotator,
    CredentialSource,
    env_credential_source,
)
from src.core.provider.base import ProviderAdapter, ProviderContext
from src.core.provider.provider_registry import ProviderRegistry
from src.core.resilience.retry import RetryExecutor
from src.providers import register_builtin_providers

logger = logging.getLogger(__name__)

DEFAULT_AUDIO_LANGUAGE = "en"
DEFAULT_AUDIO_VOICE = "default"


class InitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class AIProviderManager:
    """Routes capability requests across configured AI providers.

    Args:
        settings: Environment settings; loaded from the environment if omitted.
        routing_table: Routing configuration. When omitted, initialize()
            loads ``settings.config_file`` (or the built-in table).
        registry: Adapter factories. Defaults to the built-in providers.
        preferences: Store for user selections. Defaults to a JSON file at
            ``settings.preferences_file``.
        credentials: API keys per provider. Defaults to environment variables
            named by each provider's ``required_env_keys``.
        retry_executor: Shared retry/circuit-breaker service.
        http_client: Shared httpx client handed to every adapter.
    """

    def __init__(
        self,
        settings: OrchestratorSettings | None = None,
        *,
        routing_table: RoutingTable | None = None,
        registry: ProviderRegistry | None = None,
        preferences: PreferenceStore | None = None,
        credentials: CredentialSource | None = None,
        retry_executor: RetryExecutor | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings or Settings.load()
        self._routing_table = routing_table
        self.registry = registry or register_builtin_providers(ProviderRegistry())
        self.preferences = preferences or FileSystemPreferenceStore(
            self.settings.preferences_file
        )
        self._credentials = credentials
        self._http_client = http_client

        self.key_rotator = ApiKeyRotator()
        self._owns_retry_executor = retry_executor is None
        self.retry_executor = retry_executor or RetryExecutor(
            self.settings.retry_config(), self.settings.circuit_breaker_config()
        )
        self.response_cache: ResponseCache[AIResponse] = ResponseCache(
            max_size=self.settings.cache_max_size,
            ttl_minutes=self.settings.memory_cache_ttl_minutes(),
        )
        self.persistent_cache = PersistentCache(
            self.settings.cache_dir,
            timedelta(days=self.settings.persistent_cache_days),
        )
        self.media = MediaPersistence(
            self.settings.cache_dir / "images", self.persistent_cache.audio_dir
        )
        self.monitoring = MonitoringService()

        self._state = InitState.UNINITIALIZED
        self._init_lock = asyncio.Lock()
        self._resolver: ConfigResolver | None = None
        self._providers: dict[str, ProviderAdapter] = {}

    async def __aenter__(self) -> AIProviderManager:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.dispose()

    # === Initialization ===

    @property
    def state(self) -> InitState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is InitState.READY

    @property
    def resolver(self) -> ConfigResolver:
        if self._resolver is None:
            raise NotInitializedError("AIProviderManager.initialize() has not completed")
        return self._resolver

    @property
    def providers(self) -> dict[str, ProviderAdapter]:
        return dict(self._providers)

    async def initialize(self, routing_table: RoutingTable | None = None) -> None:
        """Build providers and services. A no-op once ready.

        Concurrent callers wait for the first one to finish. On failure
        the manager stays uninitialized and the error propagates.

        Raises:
            ConfigurationLoadError: If the routing table cannot be loaded
        """
        async with self._init_lock:
            if self._state is InitState.READY:
                return
            self._state = InitState.INITIALIZING
            created: dict[str, ProviderAdapter] = {}
            try:
                table = routing_table or self._routing_table
                if table is None:
                    table = load_routing_table(self.settings.config_file)
                resolver = ConfigResolver(table, self.preferences)
                self.key_rotator.initialize(
                    self._credentials
                    if self._credentials is not None
                    else env_credential_source(table)
                )

                for provider_id, provider_config in table.enabled_providers.items():
                    if not self.registry.exists(provider_id):
                        logger.warning(
                            "Provider %s is configured but has no registered adapter",
                            provider_id,
                        )
                        continue
                    context = ProviderContext(
                        config=provider_config,
                        key_rotator=self.key_rotator,
                        timeout=self.settings.request_timeout,
                        http_client=self._http_client,
                    )
                    adapter = self.registry.create(provider_id, context)
                    created[provider_id] = adapter
                    await adapter.initialize()
            except BaseException:
                for adapter in created.values():
                    await self._dispose_adapter(adapter)
                self.key_rotator.clear()
                self._state = InitState.UNINITIALIZED
                raise

            self._routing_table = table
            self._resolver = resolver
            self._providers = created
            self._apply_global_settings(table)
            self.response_cache.start_sweeper()
            self._state = InitState.READY
            logger.info(
                "Orchestrator ready with providers: %s",
                ", ".join(created) or "<none>",
            )

    def _apply_global_settings(self, table: RoutingTable) -> None:
        if self._owns_retry_executor:
            self.retry_executor.config = self.settings.retry_config(table.global_settings)
        self.response_cache.ttl_seconds = (
            self.settings.memory_cache_ttl_minutes(table.global_settings) * 60
        )

    async def _ensure_initialized(self) -> None:
        if self._state is InitState.READY:
            return
        interval = self.settings.init_wait_interval_ms / 1000
        for _ in range(self.settings.init_wait_attempts):
            if self._state is not InitState.INITIALIZING:
                break
            await asyncio.sleep(interval)
        if self._state is InitState.READY:
            return
        if self._state is InitState.INITIALIZING:
            raise NotInitializedError(
                "Initialization did not complete within "
                f"{self.settings.init_wait_attempts * self.settings.init_wait_interval_ms} ms"
            )
        await self.initialize()

    # === Sending ===

    async def send_message(
        self,
        capability: Capability,
        message: str,
        history: Sequence[dict[str, Any]] | None = None,
        image_base64: str | None = None,
        image_mime_type: str | None = None,
        additional_params: AdditionalParams | None = None,
        *,
        system_prompt: SystemPrompt | None = None,
        save_to_cache: bool = False,
    ) -> AIResponse:
        """Send one request, falling back across providers until one succeeds.

        Args:
            capability: What is being asked for.
            message: The user message, appended to the history.
            history: Prior turns, used when no system_prompt is given.
            image_base64: Attached image (or audio, for transcription).
            image_mime_type: MIME type of the attachment.
            additional_params: Audio or image options.
            system_prompt: Full prompt context; its history is extended.
            save_to_cache: Persist generated images to disk.

        Raises:
            NoProviderAvailableError: No candidate exists or all of them failed
            NotInitializedError: Another caller's initialization is stuck
        """
        await self._ensure_initialized()

        base_prompt = system_prompt or SystemPrompt(history=tuple(history or ()))
        prompt = base_prompt.with_user_message(message)

        with correlation_context(uuid.uuid4().hex):
            candidates = self._resolve_candidates(capability)
            if not candidates:
                raise NoProviderAvailableError(
                    capability.value,
                    f"No providers available for capability {capability.value}",
                )
            logger.debug("Candidates for %s: %s", capability.value, candidates)

            user_config = self.resolver.get_user_config(capability)
            preferred_model = user_config.model if user_config else None

            last_error: BaseException | None = None
            for provider_id in candidates:
                try:
                    return await self._send_with_provider(
                        provider_id,
                        capability,
                        prompt,
                        preferred_model,
                        image_base64,
                        image_mime_type,
                        additional_params,
                        save_to_cache,
                    )
                except Exception as e:
                    last_error = e
                    logger.warning(
                        "Provider %s failed for %s: %s: %s",
                        provider_id,
                        capability.value,
                        type(e).__name__,
                        e,
                    )

            logger.error("All providers failed for %s", capability.value)
            raise NoProviderAvailableError(capability.value, last_error=last_error)

    def _resolve_candidates(self, capability: Capability) -> list[str]:
        available = {
            pid: adapter.supported_capabilities for pid, adapter in self._providers.items()
        }
        return self.resolver.resolve_provider_order(capability, available)

    async def _send_with_provider(
        self,
        provider_id: str,
        capability: Capability,
        prompt: SystemPrompt,
        preferred_model: str | None,
        image_base64: str | None,
        image_mime_type: str | None,
        additional_params: AdditionalParams | None,
        save_to_cache: bool,
    ) -> AIResponse:
        adapter = self._providers[provider_id]
        model = self.resolver.select_model(provider_id, capability, preferred_model)
        is_audio = capability is Capability.AUDIO_GENERATION
        voice = self.resolver.get_voice_for_provider(provider_id) if is_audio else None
        text = prompt.last_user_message

        audio_key: str | None = None
        audio_params = (additional_params.audio if additional_params else None) or AudioParams()
        if is_audio:
            audio_key = audio_cache_key(
                text=text,
                voice=voice or DEFAULT_AUDIO_VOICE,
                language=audio_params.language or DEFAULT_AUDIO_LANGUAGE,
                provider=provider_id,
                speed=audio_params.speed,
                pitch=audio_params.temperature or 0.0,
                audio_format=audio_params.audio_format,
            )
            table = self._routing_table
            if table is not None and table.global_settings.tts_cache_enabled:
                cached = self._cached_audio_response(provider_id, text, audio_key)
                if cached is not None:
                    return cached

        cache_key = CacheKey(provider_id, audio_key or _serialize_history(prompt), model or "")
        cached_response = self.response_cache.get(cache_key)
        if cached_response is not None:
            if _is_valid_cached(cached_response, capability):
                logger.debug("Memory cache hit for %s", provider_id)
                return cached_response
            logger.warning("Dropping corrupt cache entry for %s", provider_id)
            self.response_cache.remove(cache_key)

        if adapter.requires_api_key and not self.key_rotator.has_available_keys(provider_id):
            raise ApiKeysExhaustedError(provider_id)

        async def attempt() -> ProviderResponse:
            result = await adapter.send_message(
                prompt,
                capability,
                model=model,
                image_base64=image_base64,
                image_mime_type=image_mime_type,
                voice=voice,
                additional_params=additional_params,
            )
            if capability is Capability.IMAGE_GENERATION and not result.has_image:
                raise RetryableProviderError(
                    provider_id,
                    "Provider returned no image for an image generation request",
                    RetryableProviderError.EMPTY_IMAGE_STATUS,
                )
            return result

        started = time.perf_counter()
        try:
            provider_response = await self.retry_executor.execute_with_retry(attempt, provider_id)
        except Exception as e:
            self.monitoring.record_performance(
                provider_id, _elapsed_ms(started), False, classify_error(e)
            )
            raise

        response = self._build_response(
            provider_id, provider_response, text, audio_key, audio_params, save_to_cache
        )
        if is_audio and response.audio is not None and response.audio.base64:
            self.response_cache.set(cache_key, response)
        self.monitoring.record_performance(provider_id, _elapsed_ms(started), True)
        logger.info("Provider %s served %s", provider_id, capability.value)
        return response

    def _cached_audio_response(
        self, provider_id: str, text: str, audio_key: str
    ) -> AIResponse | None:
        path = self.persistent_cache.get_cached_audio_file(audio_key)
        if path is None:
            return None
        data = self.media.load_audio_bytes(path)
        if not data:
            return None
        logger.debug("Audio cache hit %s", path.name)
        return AIResponse(
            text=text,
            provider=provider_id,
            audio=AiAudio(
                url=str(path),
                transcript=text,
                base64=base64.b64encode(data).decode("ascii"),
            ),
        )

    def _build_response(
        self,
        provider_id: str,
        provider_response: ProviderResponse,
        text: str,
        audio_key: str | None,
        audio_params: AudioParams,
        save_to_cache: bool,
    ) -> AIResponse:
        image: AiImage | None = None
        if provider_response.image_base64:
            url = (
                self.media.save_base64_image(provider_response.image_base64)
                if save_to_cache
                else None
            )
            image = AiImage(
                url=url,
                prompt=provider_response.prompt or None,
                base64=None if url else provider_response.image_base64,
            )

        audio: AiAudio | None = None
        if provider_response.audio_base64:
            saved = self.media.save_base64_audio_complete(
                provider_response.audio_base64,
                file_stem=audio_key,
                audio_format=provider_response.audio_format or audio_params.audio_format,
            )
            if saved is not None:
                path, cleaned = saved
                audio = AiAudio(url=path, transcript=text, base64=cleaned)
            else:
                audio = AiAudio(transcript=text, base64=provider_response.audio_base64)

        return AIResponse(
            text=provider_response.text or (text if audio else ""),
            provider=provider_id,
            image=image,
            audio=audio,
        )

    # === Read accessors ===

    async def get_available_models(self, provider_id: str) -> list[str]:
        """Model ids for a provider: disk cache, then the provider API, then config."""
        await self._ensure_initialized()
        cached = self.persistent_cache.get_cached_models(provider_id)
        if cached is not None:
            return cached

        adapter = self._providers.get(provider_id)
        if adapter is not None:
            fetched = await adapter.fetch_models_from_api()
            if fetched:
                self.persistent_cache.save_models(provider_id, fetched)
                return fetched

        config = self.resolver.provider_config(provider_id)
        if config is None:
            return []
        models: list[str] = []
        for capability_models in config.models.values():
            models.extend(m for m in capability_models if m not in models)
        return models

    async def get_available_providers_for_capability(
        self, capability: Capability
    ) -> list[ProviderSummary]:
        await self._ensure_initialized()
        summaries = []
        for provider_id in self._resolve_candidates(capability):
            config = self.resolver.provider_config(provider_id)
            if config is None:
                continue
            summaries.append(
                ProviderSummary(
                    id=provider_id,
                    display_name=config.display_name,
                    description=config.description,
                    capabilities=config.capabilities,
                    enabled=config.enabled,
                )
            )
        return summaries

    async def get_providers_by_capability(self, capability: Capability) -> list[str]:
        await self._ensure_initialized()
        return [
            pid
            for pid in self.resolver.providers_by_capability(capability)
            if pid in self._providers
        ]

    async def get_primary_provider(self, capability: Capability) -> str | None:
        await self._ensure_initialized()
        return self.resolver.primary_provider(capability)

    async def get_provider_for_model(self, model: str) -> str | None:
        await self._ensure_initialized()
        return self.resolver.get_provider_for_model(model)

    async def get_current_provider(self, capability: Capability) -> str | None:
        """Provider the next request for ``capability`` would try first."""
        await self._ensure_initialized()
        candidates = self._resolve_candidates(capability)
        return candidates[0] if candidates else None

    async def get_current_model(self, capability: Capability) -> str | None:
        provider_id = await self.get_current_provider(capability)
        if provider_id is None:
            return None
        user_config = self.resolver.get_user_config(capability)
        preferred = None
        if user_config is not None and user_config.provider == provider_id:
            preferred = user_config.model
        return self.resolver.select_model(provider_id, capability, preferred)

    async def get_current_voice(self, provider_id: str) -> str | None:
        await self._ensure_initialized()
        return self.resolver.get_voice_for_provider(provider_id)

    async def get_default_model(self, capability: Capability) -> str | None:
        provider_id = await self.get_current_provider(capability)
        if provider_id is None:
            return None
        return self.resolver.select_model(provider_id, capability)

    async def get_default_model_for_provider(
        self, provider_id: str, capability: Capability
    ) -> str | None:
        await self._ensure_initialized()
        return self.resolver.select_model(provider_id, capability)

    async def get_available_voices(self, provider_id: str) -> list[VoiceInfo]:
        """Voices for a provider, served from the voices disk cache when fresh."""
        await self._ensure_initialized()
        cached = self.persistent_cache.get_cached_voices(provider_id)
        if cached is not None:
            return [VoiceInfo.from_dict(item) for item in cached]

        adapter = self._providers.get(provider_id)
        if adapter is None:
            return []
        voices = await adapter.get_available_voices()
        if voices:
            self.persistent_cache.save_voices(provider_id, [v.to_dict() for v in voices])
        return voices

    # === User selections ===

    async def set_model(self, provider_id: str, model_id: str, capability: Capability) -> None:
        """Pin ``provider_id``/``model_id`` for a capability."""
        await self._ensure_initialized()
        existing = self.resolver.get_user_config(capability)
        voice = existing.voice if existing and existing.provider == provider_id else None
        self.resolver.save_user_config(capability, provider_id, model_id, voice)
        logger.info("Selected %s/%s for %s", provider_id, model_id, capability.value)

    async def set_voice(self, provider_id: str, voice_id: str) -> None:
        """Remember a voice for a provider and pin it for audio generation."""
        await self._ensure_initialized()
        self.preferences.set_voice(provider_id, voice_id)
        capability = Capability.AUDIO_GENERATION
        existing = self.resolver.get_user_config(capability)
        if existing and existing.provider == provider_id:
            model = existing.model
        else:
            model = self.resolver.select_model(provider_id, capability) or ""
        self.resolver.save_user_config(capability, provider_id, model, voice_id)
        logger.info("Selected voice %s for %s", voice_id, provider_id)

    # === Cache maintenance ===

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
        """Path of a previously synthesized clip, or None if it is not on disk."""
        key = audio_cache_key(
            text=text,
            voice=voice,
            language=language,
            provider=provider,
            speed=speed,
            pitch=pitch,
            audio_format=audio_format,
        )
        return self.persistent_cache.get_cached_audio_file(key)

    def clear_text_cache(self) -> int:
        return self.response_cache.clear()

    def clear_audio_cache(self) -> int:
        """Clear cached audio in memory and on disk; returns the number removed."""
        return self.response_cache.clear() + self.persistent_cache.clear_audio_cache()

    def clear_image_cache(self) -> int:
        return self.media.clear_image_cache()

    def clear_models_cache(self) -> int:
        return self.persistent_cache.clear_models_cache()

    # === Health & stats ===

    async def health_check(self) -> dict[str, bool]:
        """Check every provider. Never raises; a failing check reports False."""
        await self._ensure_initialized()
        results: dict[str, bool] = {}
        for provider_id, adapter in self._providers.items():
            try:
                results[provider_id] = await adapter.is_healthy()
            except Exception as e:
                logger.warning("Health check for %s raised: %s", provider_id, e)
                results[provider_id] = False
        return results

    def get_system_stats(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "providers": list(self._providers),
            "retry": self.retry_executor.get_stats(),
            "circuits": {
                pid: status.to_dict()
                for pid, status in self.retry_executor.get_all_circuit_statuses().items()
            },
            "api_keys": {pid: self.key_rotator.get_provider_stats(pid) for pid in self._providers},
            "response_cache": self.response_cache.stats(),
            "persistent_cache": self.persistent_cache.stats(),
            "metrics": self.monitoring.summary(),
        }

    # === Teardown ===

    async def dispose(self) -> None:
        """Release providers, timers and in-memory state. Safe to call anytime."""
        await self.response_cache.stop_sweeper()
        providers, self._providers = self._providers, {}
        for adapter in providers.values():
            await self._dispose_adapter(adapter)
        self.response_cache.clear()
        self.key_rotator.clear()
        self._resolver = None
        self._state = InitState.UNINITIALIZED
        logger.debug("Orchestrator disposed")

    @staticmethod
    async def _dispose_adapter(adapter: ProviderAdapter) -> None:
        try:
            await adapter.dispose()
        except Exception as e:
            logger.warning("Error disposing provider %s: %s", adapter.provider_id, e)


def _serialize_history(prompt: SystemPrompt) -> str:
    return json.dumps(list(prompt.history), sort_keys=True, ensure_ascii=False, default=str)


def _is_valid_cached(response: AIResponse, capability: Capability) -> bool:
    if capability is Capability.AUDIO_GENERATION:
        return response.audio is not None and bool(response.audio.base64)
    return True


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)
