"""Provider adapter contract.

Every backend implements ProviderAdapter. The orchestrator only ever talks
to providers through this interface, so adding a backend means writing an
adapter and registering a factory for it in the ProviderRegistry.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from src.core.capability import Capability
from src.core.config.routing import ProviderConfig
from src.core.exceptions import ApiKeysExhaustedError, ProviderError
from src.core.models import AdditionalParams, ProviderResponse, SystemPrompt, VoiceInfo
from src.core.provider.api_key_rotator import ApiKeyRotator

logger = logging.getLogger(__name__)

AUTH_FAILURE_STATUSES = (401, 402, 403)
RATE_LIMIT_STATUS = 429


@dataclass(frozen=True)
class ProviderContext:
    """Everything a factory needs to build an adapter.

    Attributes:
        config: Static configuration of the provider
        key_rotator: Shared key pool; adapters pull a key per HTTP call
        timeout: HTTP timeout in seconds
        http_client: Optional shared client (tests inject one)
    """

    config: ProviderConfig
    key_rotator: ApiKeyRotator
    timeout: float = 30.0
    http_client: httpx.AsyncClient | None = None


class ProviderAdapter(ABC):
    """Interface every backend exposes to the orchestrator."""

    requires_api_key: bool = True

    def __init__(self, context: ProviderContext) -> None:
        self.context = context
        self.config = context.config

    @property
    def provider_id(self) -> str:
        return self.config.provider_id

    @property
    def supported_capabilities(self) -> tuple[Capability, ...]:
        return self.config.capabilities

    def supports(self, capability: Capability) -> bool:
        return capability in self.supported_capabilities

    async def initialize(self) -> None:
        """Hook for adapters that need async setup."""

    @abstractmethod
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
        """Perform one request against the backend.

        ``image_base64`` carries the binary attachment of the request: an
        image for analysis, or the audio clip for transcription.

        Raises:
            ProviderError: On any backend-reported failure
            httpx.HTTPError: On transport failures and timeouts
        """

    async def fetch_models_from_api(self) -> list[str] | None:
        """Live model list, or None when the backend has no listing endpoint."""
        return None

    async def get_available_voices(self) -> list[VoiceInfo]:
        return [VoiceInfo(id=voice, name=voice) for voice in self.config.voices]

    async def is_healthy(self) -> bool:
        return True

    async def dispose(self) -> None:
        """Release network resources."""


class HttpProviderAdapter(ProviderAdapter):
    """Base class for REST backends reached through httpx.

    Pulls an API key from the rotator for every call and feeds auth and
    quota failures back into it, so a retry automatically uses the next key.
    """

    def __init__(self, context: ProviderContext) -> None:
        super().__init__(context)
        self._owns_client = context.http_client is None
        self.client = context.http_client or httpx.AsyncClient(timeout=context.timeout)

    @abstractmethod
    def auth_headers(self, api_key: str) -> dict[str, str]:
        """Headers that authenticate a request with ``api_key``."""

    async def _acquire_key(self) -> str:
        key = await self.context.key_rotator.get_next_available_key(self.provider_id)
        if key is None:
            raise ApiKeysExhaustedError(self.provider_id)
        return key

    async def request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send an authenticated request and translate error statuses.

        Raises:
            ApiKeysExhaustedError: If no key is available
            ProviderError: For any non-2xx status
        """
        api_key = await self._acquire_key()
        response = await self.client.request(
            method,
            url,
            headers=self.auth_headers(api_key),
            json=json,
            data=data,
            files=files,
        )
        if response.is_success:
            return response

        status = response.status_code
        body = response.text[:500]
        rotator = self.context.key_rotator
        if status in AUTH_FAILURE_STATUSES:
            await rotator.mark_current_key_failed(self.provider_id, f"HTTP {status}")
        elif status == RATE_LIMIT_STATUS:
            await rotator.mark_current_key_exhausted(self.provider_id)
        logger.debug("%s %s -> %d: %s", method, url, status, body)
        raise ProviderError(self.provider_id, f"{method} {url} failed: {body}", status_code=status)

    async def is_healthy(self) -> bool:
        try:
            await self.request("GET", self.config.endpoint_url("models"))
        except Exception as e:
            logger.debug("Health check failed for %s: %s", self.provider_id, e)
            return False
        return True

    async def dispose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
