"""API key rotation with per-key health tracking."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from src.core.config.routing import RoutingTable

logger = logging.getLogger(__name__)

CredentialSource = Mapping[str, Sequence[str]] | Callable[[str], Sequence[str]]

_KEY_SEPARATORS = re.compile(r"[\s,]+")


class ApiKeyStatus(str, Enum):
    ACTIVE = "active"
    FAILED = "failed"
    EXHAUSTED = "exhausted"
    INVALID = "invalid"


@dataclass
class ApiKeyInfo:
    """Mutable record for one raw credential string."""

    key: str
    index: int
    status: ApiKeyStatus = ApiKeyStatus.ACTIVE
    last_used: datetime | None = None
    last_error: str | None = None
    failure_count: int = 0

    @property
    def is_available(self) -> bool:
        return self.status is ApiKeyStatus.ACTIVE

    @property
    def key_hash(self) -> str:
        return api_key_hash(self.key)

    def mark_used(self) -> None:
        self.last_used = datetime.now(timezone.utc)

    def mark_failed(self, reason: str) -> None:
        self.status = ApiKeyStatus.FAILED
        self.last_error = reason
        self.failure_count += 1

    def mark_exhausted(self) -> None:
        self.status = ApiKeyStatus.EXHAUSTED
        self.last_error = "Rate limit exceeded"
        self.failure_count += 1

    def mark_invalid(self, reason: str) -> None:
        self.status = ApiKeyStatus.INVALID
        self.last_error = reason
        self.failure_count += 1

    def reset(self) -> None:
        self.status = ApiKeyStatus.ACTIVE
        self.last_error = None
        self.failure_count = 0


def api_key_hash(api_key: str) -> str:
    """Return first 8 chars of sha256 hash, safe for logs."""
    return hashlib.sha256(api_key.encode()).hexdigest()[:8]


def split_api_keys(raw_value: str | None) -> list[str]:
    """Split a variable holding one or more keys (whitespace or comma separated)."""
    if not raw_value:
        return []
    return [part for part in _KEY_SEPARATORS.split(raw_value.strip()) if part]


def env_credential_source(routing_table: RoutingTable) -> Callable[[str], list[str]]:
    """Build a credential source reading each provider's required env keys.

    Keys from every listed variable are concatenated in declaration order.
    """

    def load(provider_id: str) -> list[str]:
        config = routing_table.providers.get(provider_id)
        env_names = config.api_settings.required_env_keys if config else ()
        if not env_names:
            env_names = (f"{provider_id.upper()}_API_KEY",)
        keys: list[str] = []
        for env_name in env_names:
            keys.extend(split_api_keys(os.environ.get(env_name)))
        return keys

    return load


class ApiKeyRotator:
    """Per-provider key pool with sticky rotation.

    Responsibilities:
    - Load keys lazily per provider from the credential source
    - Hand out the next active key, starting from the current index
    - Demote a key on auth/quota failure and advance past it

    Per-provider asyncio.Lock instances serialize state changes.
    """

    def __init__(self, credential_source: CredentialSource | None = None) -> None:
        self._source: CredentialSource = credential_source or {}
        self._keys: dict[str, list[ApiKeyInfo]] = {}
        self._indices: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def initialize(self, credential_source: CredentialSource) -> None:
        """Switch to a new credential source and drop every cached key."""
        self._source = credential_source
        self._keys.clear()
        self._indices.clear()

    def _lock_for(self, provider_id: str) -> asyncio.Lock:
        return self._locks.setdefault(provider_id, asyncio.Lock())

    def _load_keys(self, provider_id: str) -> list[ApiKeyInfo]:
        provider_id = provider_id.lower()
        cached = self._keys.get(provider_id)
        if cached is not None:
            return cached

        if callable(self._source):
            raw_keys = self._source(provider_id)
        else:
            raw_keys = self._source.get(provider_id, ())
        infos = [
            ApiKeyInfo(key=key.strip(), index=i)
            for i, key in enumerate(k for k in raw_keys if k and k.strip())
        ]
        self._keys[provider_id] = infos
        self._indices.setdefault(provider_id, 0)
        logger.debug("Loaded %d API key(s) for %s", len(infos), provider_id)
        return infos

    async def get_next_available_key(self, provider_id: str) -> str | None:
        """Return the first active key at or after the current index (wrapping).

        Returns:
            The key, or None if the provider has no active key left.
        """
        provider_id = provider_id.lower()
        async with self._lock_for(provider_id):
            keys = self._load_keys(provider_id)
            if not keys:
                return None
            start = self._indices.get(provider_id, 0) % len(keys)
            for offset in range(len(keys)):
                idx = (start + offset) % len(keys)
                info = keys[idx]
                if info.is_available:
                    self._indices[provider_id] = idx
                    info.mark_used()
                    return info.key
            logger.warning("No active API keys left for %s", provider_id)
            return None

    async def mark_current_key_failed(self, provider_id: str, reason: str) -> None:
        """Mark the current key failed (auth error) and advance the index."""
        provider_id = provider_id.lower()
        async with self._lock_for(provider_id):
            info = self._current(provider_id)
            if info is None:
                return
            info.mark_failed(reason)
            logger.warning(
                "API key %s for %s marked failed: %s", info.key_hash, provider_id, reason
            )
            self._advance(provider_id)

    async def mark_current_key_exhausted(self, provider_id: str) -> None:
        """Mark the current key exhausted (quota/rate limit) and advance the index."""
        provider_id = provider_id.lower()
        async with self._lock_for(provider_id):
            info = self._current(provider_id)
            if info is None:
                return
            info.mark_exhausted()
            logger.warning("API key %s for %s exhausted", info.key_hash, provider_id)
            self._advance(provider_id)

    def _current(self, provider_id: str) -> ApiKeyInfo | None:
        keys = self._load_keys(provider_id)
        if not keys:
            return None
        return keys[self._indices.get(provider_id, 0) % len(keys)]

    def _advance(self, provider_id: str) -> None:
        keys = self._keys.get(provider_id) or []
        if keys:
            self._indices[provider_id] = (self._indices.get(provider_id, 0) + 1) % len(keys)

    def has_available_keys(self, provider_id: str) -> bool:
        return any(info.is_available for info in self._load_keys(provider_id))

    def get_provider_stats(self, provider_id: str) -> dict[str, int]:
        provider_id = provider_id.lower()
        keys = self._load_keys(provider_id)
        counts = {status: 0 for status in ApiKeyStatus}
        for info in keys:
            counts[info.status] += 1
        return {
            "total": len(keys),
            "active": counts[ApiKeyStatus.ACTIVE],
            "failed": counts[ApiKeyStatus.FAILED],
            "exhausted": counts[ApiKeyStatus.EXHAUSTED],
            "invalid": counts[ApiKeyStatus.INVALID],
            "current_index": self._indices.get(provider_id, 0),
        }

    def reset_provider_keys(self, provider_id: str) -> None:
        """Reactivate every key of one provider and rewind its index."""
        provider_id = provider_id.lower()
        for info in self._keys.get(provider_id, []):
            info.reset()
        if provider_id in self._indices:
            self._indices[provider_id] = 0

    def reset_all_keys(self) -> None:
        for provider_id in list(self._keys):
            self.reset_provider_keys(provider_id)

    def clear(self) -> None:
        """Drop all cached keys; they are reloaded lazily on next use."""
        self._keys.clear()
        self._indices.clear()
