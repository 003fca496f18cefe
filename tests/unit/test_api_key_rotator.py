"""Unit tests for round-robin API key rotation."""

import pytest

from src.core.config import RoutingTable
from src.core.provider.api_key_rotator import (
    ApiKeyRotator,
    ApiKeyStatus,
    api_key_hash,
    env_credential_source,
    split_api_keys,
)


@pytest.mark.unit
@pytest.mark.asyncio
class TestApiKeyRotator:
    async def test_returns_first_active_key(self):
        rotator = ApiKeyRotator({"openai": ["k1", "k2"]})
        assert await rotator.get_next_available_key("openai") == "k1"
        # Rotation is sticky until the key is demoted
        assert await rotator.get_next_available_key("openai") == "k1"

    async def test_failed_key_is_skipped(self):
        rotator = ApiKeyRotator({"openai": ["k1", "k2", "k3"]})
        await rotator.get_next_available_key("openai")
        await rotator.mark_current_key_failed("openai", "HTTP 401")

        assert await rotator.get_next_available_key("openai") == "k2"
        stats = rotator.get_provider_stats("openai")
        assert stats["failed"] == 1
        assert stats["active"] == 2
        assert stats["current_index"] == 1

    async def test_exhausted_key_is_skipped_and_wraps(self):
        rotator = ApiKeyRotator({"openai": ["k1", "k2"]})
        await rotator.get_next_available_key("openai")
        await rotator.mark_current_key_exhausted("openai")
        assert await rotator.get_next_available_key("openai") == "k2"
        await rotator.mark_current_key_failed("openai", "HTTP 403")

        assert await rotator.get_next_available_key("openai") is None
        assert not rotator.has_available_keys("openai")
        assert rotator.get_provider_stats("openai")["exhausted"] == 1

    async def test_unknown_provider_has_no_keys(self):
        rotator = ApiKeyRotator({})
        assert await rotator.get_next_available_key("nobody") is None
        assert rotator.get_provider_stats("nobody")["total"] == 0

    async def test_provider_ids_are_case_insensitive(self):
        rotator = ApiKeyRotator({"openai": ["k1"]})
        assert await rotator.get_next_available_key("OpenAI") == "k1"

    async def test_reset_reactivates_keys(self):
        rotator = ApiKeyRotator({"openai": ["k1"]})
        await rotator.get_next_available_key("openai")
        await rotator.mark_current_key_exhausted("openai")

        rotator.reset_all_keys()
        assert await rotator.get_next_available_key("openai") == "k1"

    async def test_initialize_drops_cached_keys(self):
        rotator = ApiKeyRotator({"openai": ["old"]})
        assert await rotator.get_next_available_key("openai") == "old"

        rotator.initialize({"openai": ["new"]})
        assert await rotator.get_next_available_key("openai") == "new"

    async def test_keys_are_loaded_lazily(self):
        calls = []

        def source(provider_id):
            calls.append(provider_id)
            return [" key-a ", "", "key-b"]

        rotator = ApiKeyRotator(source)
        assert calls == []
        assert await rotator.get_next_available_key("openai") == "key-a"
        await rotator.get_next_available_key("openai")
        assert calls == ["openai"]
        assert rotator.get_provider_stats("openai")["total"] == 2


@pytest.mark.unit
class TestCredentialHelpers:
    def test_split_api_keys(self):
        assert split_api_keys("a b,c\n d") == ["a", "b", "c", "d"]
        assert split_api_keys("") == []
        assert split_api_keys(None) == []

    def test_key_hash_is_short_and_stable(self):
        assert api_key_hash("secret") == api_key_hash("secret")
        assert len(api_key_hash("secret")) == 8
        assert api_key_hash("secret") != "secret"[:8]

    def test_env_source_reads_required_env_keys(self, monkeypatch):
        table = RoutingTable.from_dict(
            {
                "ai_providers": {
                    "openai": {"api_settings": {"required_env_keys": ["OPENAI_API_KEY"]}},
                    "mistral": {},
                }
            }
        )
        monkeypatch.setenv("OPENAI_API_KEY", "sk-1 sk-2")
        monkeypatch.setenv("MISTRAL_API_KEY", "m-1")

        source = env_credential_source(table)
        assert source("openai") == ["sk-1", "sk-2"]
        assert source("mistral") == ["m-1"]

    def test_key_status_values(self):
        assert {s.value for s in ApiKeyStatus} >= {"active", "failed", "exhausted", "invalid"}
