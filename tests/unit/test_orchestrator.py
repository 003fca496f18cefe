"""Tests for AIProviderManager routing, fallback, caching and lifecycle."""

import asyncio
import base64
from dataclasses import replace
from pathlib import Path

import pytest
import pytest_asyncio

from src.core.capability import Capability
from src.core.config.routing import GlobalSettings
from src.core.exceptions import (
    ApiKeysExhaustedError,
    ConfigurationLoadError,
    NoProviderAvailableError,
    NotInitializedError,
    ProviderError,
)
from src.core.models import AdditionalParams, ProviderResponse
from src.core.preferences import InMemoryPreferenceStore
from src.orchestrator import AIProviderManager, InitState
from tests.fixtures.fake_providers import ScriptedProvider, fake_routing_table
from tests.fixtures.mock_http import AUDIO_BYTES, PNG_BASE64

AUDIO_BASE64 = base64.b64encode(AUDIO_BYTES).decode("ascii")


def audio_response() -> ProviderResponse:
    return ProviderResponse(text="", audio_base64=AUDIO_BASE64)


@pytest.fixture
def preferences():
    return InMemoryPreferenceStore()


@pytest.fixture
def make_manager(test_settings, fake_registry, preferences, fast_retry_executor):
    def factory(routing_table=None, **overrides):
        settings = overrides.pop("settings", test_settings)
        kwargs = {
            "routing_table": routing_table or fake_routing_table(),
            "registry": fake_registry,
            "preferences": preferences,
            "credentials": {},
            "retry_executor": fast_retry_executor,
        }
        kwargs.update(overrides)
        return AIProviderManager(settings, **kwargs)

    return factory


@pytest_asyncio.fixture
async def manager(make_manager):
    manager = make_manager()
    yield manager
    await manager.dispose()


@pytest.mark.unit
@pytest.mark.asyncio
class TestInitialization:
    async def test_initialize_builds_enabled_providers(self, manager, scripts):
        assert manager.state is InitState.UNINITIALIZED

        await manager.initialize()

        assert manager.is_initialized
        assert list(manager.providers) == ["alpha", "beta", "gamma"]
        assert all(script.instances == 1 for script in scripts.values())

    async def test_initialize_is_idempotent_under_concurrency(self, manager, scripts):
        await asyncio.gather(manager.initialize(), manager.initialize(), manager.initialize())
        await manager.initialize()

        assert scripts["alpha"].instances == 1

    async def test_requests_initialize_lazily(self, manager):
        response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert manager.is_initialized
        assert response.provider == "alpha"

    async def test_missing_config_file_leaves_manager_uninitialized(
        self, test_settings, fake_registry, preferences, tmp_path
    ):
        settings = replace(test_settings, config_file=tmp_path / "missing.json")
        manager = AIProviderManager(settings, registry=fake_registry, preferences=preferences)

        with pytest.raises(ConfigurationLoadError):
            await manager.initialize()

        assert manager.state is InitState.UNINITIALIZED
        with pytest.raises(NotInitializedError):
            manager.resolver

    async def test_failed_initialization_disposes_created_adapters(
        self, make_manager, fake_registry, scripts
    ):
        def broken_factory(context):
            raise RuntimeError("gamma cannot start")

        fake_registry.register("gamma", broken_factory)
        manager = make_manager()

        with pytest.raises(RuntimeError, match="gamma cannot start"):
            await manager.initialize()

        assert manager.state is InitState.UNINITIALIZED
        assert manager.providers == {}
        assert scripts["alpha"].disposed == 1
        assert scripts["beta"].disposed == 1

    async def test_unregistered_provider_is_skipped(self, make_manager, fake_registry):
        fake_registry.unregister("beta")
        manager = make_manager()
        try:
            await manager.initialize()
            assert list(manager.providers) == ["alpha", "gamma"]
        finally:
            await manager.dispose()


@pytest.mark.unit
@pytest.mark.asyncio
class TestFallback:
    async def test_primary_serves_when_healthy(self, manager, scripts):
        scripts["alpha"].push(ProviderResponse(text="Hello from alpha"))

        response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert response.provider == "alpha"
        assert response.text == "Hello from alpha"
        call = scripts["alpha"].calls[0]
        assert call.model == "alpha-small"
        assert call.last_user_message == "Hi"
        assert scripts["beta"].calls == []

    async def test_falls_back_when_primary_fails(self, manager, scripts):
        scripts["alpha"].push(ProviderError("alpha", "boom"))
        scripts["beta"].push(ProviderResponse(text="Hello from beta"))

        response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert response.provider == "beta"
        assert response.text == "Hello from beta"
        assert len(scripts["alpha"].calls) == 1
        assert scripts["beta"].calls[0].model == "beta-1"

    async def test_retryable_error_is_retried_on_same_provider(self, manager, scripts):
        scripts["alpha"].push(ProviderError("alpha", "flaky", status_code=503))

        response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert response.provider == "alpha"
        assert len(scripts["alpha"].calls) == 2
        assert scripts["beta"].calls == []

    async def test_empty_image_is_retried_then_falls_back(self, manager, scripts):
        scripts["alpha"].default = ProviderResponse(text="sorry, no picture")
        scripts["beta"].default = ProviderResponse(text="", image_base64=PNG_BASE64)

        response = await manager.send_message(Capability.IMAGE_GENERATION, "Draw a fox")

        assert len(scripts["alpha"].calls) == 2
        assert response.provider == "beta"
        assert response.image is not None
        assert response.image.base64 == PNG_BASE64

    async def test_all_providers_failing_raises_with_last_error(self, manager, scripts):
        for provider_id in ("alpha", "beta"):
            scripts[provider_id].default = ProviderError(provider_id, f"{provider_id} down")
        last = ProviderError("gamma", "gamma down")
        scripts["gamma"].default = last

        with pytest.raises(NoProviderAvailableError) as exc_info:
            await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert exc_info.value.capability == "text_generation"
        assert exc_info.value.last_error is last

    async def test_no_candidates_raises_without_calling_providers(self, manager, scripts):
        with pytest.raises(NoProviderAvailableError) as exc_info:
            await manager.send_message(Capability.IMAGE_ANALYSIS, "What is this?")

        assert exc_info.value.last_error is None
        assert all(script.calls == [] for script in scripts.values())

    async def test_user_selection_is_tried_first(self, manager, scripts):
        await manager.set_model("gamma", "gamma-1", Capability.TEXT_GENERATION)

        response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert response.provider == "gamma"
        assert scripts["gamma"].calls[0].model == "gamma-1"
        assert scripts["alpha"].calls == []

    async def test_provider_without_keys_is_skipped(self, make_manager, fake_registry, scripts):
        class KeyedProvider(ScriptedProvider):
            requires_api_key = True

        fake_registry.register("alpha", lambda context: KeyedProvider(context, scripts["alpha"]))
        manager = make_manager()
        try:
            response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")
        finally:
            await manager.dispose()

        assert response.provider == "beta"
        assert scripts["alpha"].calls == []
        assert manager.monitoring.get_metrics("alpha") is None

    async def test_keys_exhausted_error_type(self, make_manager, fake_registry, scripts):
        class KeyedProvider(ScriptedProvider):
            requires_api_key = True

        for provider_id in ("alpha", "beta", "gamma"):
            fake_registry.register(
                provider_id,
                lambda context, _pid=provider_id: KeyedProvider(context, scripts[_pid]),
            )
        manager = make_manager()
        try:
            with pytest.raises(NoProviderAvailableError) as exc_info:
                await manager.send_message(Capability.TEXT_GENERATION, "Hi")
        finally:
            await manager.dispose()

        assert isinstance(exc_info.value.last_error, ApiKeysExhaustedError)

    async def test_history_is_forwarded(self, manager, scripts):
        history = [
            {"role": "user", "content": "Earlier question"},
            {"role": "assistant", "content": "Earlier answer"},
        ]

        await manager.send_message(Capability.TEXT_GENERATION, "Follow-up", history=history)

        assert scripts["alpha"].calls[0].last_user_message == "Follow-up"

    async def test_metrics_record_success_and_failure(self, manager, scripts):
        scripts["alpha"].push(ProviderError("alpha", "boom"))

        await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        alpha = manager.monitoring.get_metrics("alpha")
        assert alpha.total_requests == 1
        assert alpha.success_rate == 0.0
        assert manager.monitoring.get_metrics("beta").success_rate == 1.0


@pytest.mark.unit
@pytest.mark.asyncio
class TestMediaAndCaching:
    async def test_generated_image_is_inline_by_default(self, manager, scripts, cache_dir):
        scripts["alpha"].push(ProviderResponse(text="", prompt="fox", image_base64=PNG_BASE64))

        response = await manager.send_message(Capability.IMAGE_GENERATION, "fox")

        assert response.image.url is None
        assert response.image.base64 == PNG_BASE64
        assert response.image.prompt == "fox"
        assert not (cache_dir / "images").exists()

    async def test_generated_image_is_persisted_on_request(self, manager, scripts):
        scripts["alpha"].push(ProviderResponse(text="", image_base64=PNG_BASE64))

        response = await manager.send_message(
            Capability.IMAGE_GENERATION, "fox", save_to_cache=True
        )

        assert response.image.base64 is None
        path = Path(response.image.url)
        assert path.suffix == ".png"
        assert path.read_bytes() == base64.b64decode(PNG_BASE64)
        assert manager.clear_image_cache() == 1

    async def test_audio_is_saved_and_served_from_disk(self, manager, scripts):
        scripts["alpha"].push(audio_response())

        first = await manager.send_message(Capability.AUDIO_GENERATION, "Read this aloud")
        manager.clear_text_cache()
        second = await manager.send_message(Capability.AUDIO_GENERATION, "Read this aloud")

        assert len(scripts["alpha"].calls) == 1
        assert scripts["alpha"].calls[0].voice == "aria"
        assert first.text == "Read this aloud"
        assert first.audio.base64 == AUDIO_BASE64
        assert Path(first.audio.url).read_bytes() == AUDIO_BYTES
        assert second.provider == "alpha"
        assert second.audio.url == first.audio.url
        assert second.audio.base64 == AUDIO_BASE64

    async def test_audio_file_is_named_after_returned_container(self, manager, scripts):
        scripts["alpha"].push(
            ProviderResponse(text="", audio_base64=AUDIO_BASE64, audio_format="aac")
        )

        first = await manager.send_message(Capability.AUDIO_GENERATION, "Read this aloud")
        manager.clear_text_cache()
        second = await manager.send_message(Capability.AUDIO_GENERATION, "Read this aloud")

        assert Path(first.audio.url).suffix == ".aac"
        assert second.audio.url == first.audio.url
        assert len(scripts["alpha"].calls) == 1

    async def test_audio_cache_key_includes_parameters(self, manager, scripts):
        scripts["alpha"].default = audio_response()

        await manager.send_message(Capability.AUDIO_GENERATION, "Hello")
        await manager.send_message(
            Capability.AUDIO_GENERATION,
            "Hello",
            additional_params=AdditionalParams.for_audio(speed=1.5),
        )

        assert len(scripts["alpha"].calls) == 2

    async def test_audio_memory_cache_without_disk_cache(self, make_manager, scripts):
        table = fake_routing_table()
        table = replace(table, global_settings=GlobalSettings(tts_cache_enabled=False))
        manager = make_manager(table)
        scripts["alpha"].default = audio_response()
        try:
            await manager.send_message(Capability.AUDIO_GENERATION, "Hello")
            cached = await manager.send_message(Capability.AUDIO_GENERATION, "Hello")
        finally:
            await manager.dispose()

        assert len(scripts["alpha"].calls) == 1
        assert cached.audio.base64 == AUDIO_BASE64

    async def test_text_responses_are_not_memory_cached(self, manager, scripts):
        await manager.send_message(Capability.TEXT_GENERATION, "Hi")
        await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        assert len(scripts["alpha"].calls) == 2
        assert manager.response_cache.size() == 0

    async def test_clear_audio_cache_counts_memory_and_disk(self, manager, scripts):
        scripts["alpha"].push(audio_response())
        await manager.send_message(Capability.AUDIO_GENERATION, "Hello")

        assert manager.clear_audio_cache() == 2
        assert manager.persistent_cache.stats()["audio_files"] == 0


@pytest.mark.unit
@pytest.mark.asyncio
class TestRoutingTableGlobalSettings:
    @pytest.fixture
    def table_driven_settings(self, test_settings):
        return replace(
            test_settings,
            retry_max_attempts=None,
            retry_initial_delay_ms=None,
            cache_ttl_minutes=None,
        )

    @staticmethod
    def _table(**global_settings):
        return replace(fake_routing_table(), global_settings=GlobalSettings(**global_settings))

    async def test_retry_budget_comes_from_routing_table(
        self, make_manager, scripts, table_driven_settings
    ):
        manager = make_manager(
            self._table(max_retries=1, retry_delay_seconds=0),
            settings=table_driven_settings,
            retry_executor=None,
        )
        scripts["alpha"].push(ProviderError("alpha", "flaky", status_code=503))
        try:
            response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")
        finally:
            await manager.dispose()

        assert len(scripts["alpha"].calls) == 1
        assert response.provider == "beta"
        assert manager.retry_executor.config.max_attempts == 1
        assert manager.retry_executor.config.initial_delay_ms == 0

    async def test_retry_delay_is_converted_to_milliseconds(
        self, make_manager, table_driven_settings
    ):
        manager = make_manager(
            self._table(max_retries=4, retry_delay_seconds=2),
            settings=table_driven_settings,
            retry_executor=None,
        )
        async with manager:
            assert manager.retry_executor.config.max_attempts == 4
            assert manager.retry_executor.config.initial_delay_ms == 2000

    async def test_environment_retry_settings_win(self, make_manager, scripts, test_settings):
        manager = make_manager(
            self._table(max_retries=1, retry_delay_seconds=0),
            settings=replace(test_settings, retry_initial_delay_ms=0),
            retry_executor=None,
        )
        scripts["alpha"].push(ProviderError("alpha", "flaky", status_code=503))
        try:
            response = await manager.send_message(Capability.TEXT_GENERATION, "Hi")
        finally:
            await manager.dispose()

        assert len(scripts["alpha"].calls) == test_settings.retry_max_attempts
        assert response.provider == "alpha"

    async def test_injected_executor_keeps_its_config(
        self, make_manager, fast_retry_executor, table_driven_settings
    ):
        manager = make_manager(self._table(max_retries=7), settings=table_driven_settings)
        async with manager:
            assert manager.retry_executor is fast_retry_executor
            assert fast_retry_executor.config.max_attempts == 2

    async def test_memory_cache_ttl_follows_tts_cache_duration(
        self, make_manager, table_driven_settings
    ):
        manager = make_manager(
            self._table(tts_cache_duration_hours=5), settings=table_driven_settings
        )
        async with manager:
            assert manager.response_cache.ttl_seconds == 5 * 3600

    async def test_environment_cache_ttl_wins(self, make_manager, test_settings):
        manager = make_manager(self._table(tts_cache_duration_hours=5))
        async with manager:
            assert manager.response_cache.ttl_seconds == test_settings.cache_ttl_minutes * 60


@pytest.mark.unit
@pytest.mark.asyncio
class TestSelectionsAndLookups:
    async def test_current_provider_and_model(self, manager):
        assert await manager.get_current_provider(Capability.TEXT_GENERATION) == "alpha"
        assert await manager.get_current_model(Capability.TEXT_GENERATION) == "alpha-small"

        await manager.set_model("alpha", "alpha-large", Capability.TEXT_GENERATION)

        assert await manager.get_current_model(Capability.TEXT_GENERATION) == "alpha-large"

    async def test_current_provider_for_unsupported_capability(self, manager):
        assert await manager.get_current_provider(Capability.AUDIO_TRANSCRIPTION) is None
        assert await manager.get_current_model(Capability.AUDIO_TRANSCRIPTION) is None

    async def test_default_models(self, manager):
        assert await manager.get_default_model(Capability.IMAGE_GENERATION) == "alpha-draw"
        assert (
            await manager.get_default_model_for_provider("beta", Capability.IMAGE_GENERATION)
            == "beta-img"
        )

    async def test_routing_lookups(self, manager):
        assert await manager.get_primary_provider(Capability.AUDIO_GENERATION) == "alpha"
        assert await manager.get_providers_by_capability(Capability.AUDIO_GENERATION) == [
            "alpha",
            "gamma",
        ]
        assert await manager.get_provider_for_model("beta-1") == "beta"
        assert await manager.get_provider_for_model("gamma-1") is None

        summaries = await manager.get_available_providers_for_capability(
            Capability.IMAGE_GENERATION
        )
        assert [s.id for s in summaries] == ["alpha", "beta"]
        assert summaries[0].display_name == "Alpha AI"

    async def test_set_voice_pins_audio_selection(self, manager, preferences, scripts):
        assert await manager.get_current_voice("alpha") == "aria"

        await manager.set_voice("alpha", "bram")

        assert await manager.get_current_voice("alpha") == "bram"
        saved = preferences.get_capability_config(Capability.AUDIO_GENERATION)
        assert (saved.provider, saved.model, saved.voice) == ("alpha", "alpha-voice", "bram")

        scripts["alpha"].push(audio_response())
        await manager.send_message(Capability.AUDIO_GENERATION, "Hi")
        assert scripts["alpha"].calls[0].voice == "bram"

    async def test_set_model_keeps_voice_for_same_provider(self, manager, preferences):
        await manager.set_voice("alpha", "bram")
        await manager.set_model("alpha", "alpha-voice", Capability.AUDIO_GENERATION)
        assert preferences.get_capability_config(Capability.AUDIO_GENERATION).voice == "bram"

        await manager.set_model("gamma", "gamma-tts", Capability.AUDIO_GENERATION)
        assert preferences.get_capability_config(Capability.AUDIO_GENERATION).voice is None

    async def test_available_models_prefer_api_and_cache_it(self, manager, scripts):
        scripts["alpha"].models = ["alpha-live-1", "alpha-live-2"]

        assert await manager.get_available_models("alpha") == ["alpha-live-1", "alpha-live-2"]

        scripts["alpha"].models = ["changed"]
        assert await manager.get_available_models("alpha") == ["alpha-live-1", "alpha-live-2"]
        assert manager.clear_models_cache() == 1

    async def test_available_models_fall_back_to_config(self, manager):
        assert await manager.get_available_models("beta") == ["beta-1", "beta-img"]
        assert await manager.get_available_models("unknown") == []

    async def test_available_voices_are_cached(self, manager):
        voices = await manager.get_available_voices("alpha")

        assert [v.id for v in voices] == ["aria", "bram"]
        assert manager.persistent_cache.get_cached_voices("alpha") is not None
        cached = await manager.get_available_voices("alpha")
        assert [v.id for v in cached] == ["aria", "bram"]

        assert await manager.get_available_voices("beta") == []
        assert await manager.get_available_voices("unknown") == []


@pytest.mark.unit
@pytest.mark.asyncio
class TestHealthStatsAndDisposal:
    async def test_health_check_never_raises(self, manager, scripts):
        scripts["beta"].healthy = RuntimeError("connection refused")
        scripts["gamma"].healthy = False

        results = await manager.health_check()

        assert results == {"alpha": True, "beta": False, "gamma": False}

    async def test_system_stats(self, manager):
        await manager.send_message(Capability.TEXT_GENERATION, "Hi")

        stats = manager.get_system_stats()

        assert stats["state"] == "ready"
        assert stats["providers"] == ["alpha", "beta", "gamma"]
        assert "alpha" in stats["metrics"]
        assert "alpha" in stats["circuits"]
        assert stats["api_keys"]["alpha"]["total"] == 0
        assert stats["retry"]["total_operations"] == 1

    async def test_dispose_before_initialize_is_safe(self, make_manager):
        manager = make_manager()
        await manager.dispose()
        assert manager.state is InitState.UNINITIALIZED

    async def test_dispose_releases_adapters(self, manager, scripts):
        await manager.initialize()

        await manager.dispose()

        assert manager.state is InitState.UNINITIALIZED
        assert manager.providers == {}
        assert all(script.disposed == 1 for script in scripts.values())

    async def test_context_manager(self, make_manager, scripts):
        async with make_manager() as manager:
            assert manager.is_initialized
        assert not manager.is_initialized
        assert scripts["alpha"].disposed == 1

    async def test_dispose_then_reinitialize(self, manager, scripts):
        await manager.initialize()
        await manager.dispose()
        await manager.initialize()

        assert manager.is_initialized
        assert scripts["alpha"].instances == 2
