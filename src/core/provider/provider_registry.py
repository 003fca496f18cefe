"""Provider registry mapping provider ids to adapter factories."""

from __future__ import annotations

import logging
from collections.abc import Callable

from src.core.provider.base import ProviderAdapter, ProviderContext

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[ProviderContext], ProviderAdapter]


class ProviderRegistry:
    """Central registry of provider factories.

    Responsibilities:
    - Register and unregister factories at runtime
    - Build adapter instances from a ProviderContext
    - List the registered provider ids in registration order
    """

    def __init__(self) -> None:
        """Initialize an empty provider registry."""
        self._factories: dict[str, ProviderFactory] = {}

    def register(self, provider_id: str, factory: ProviderFactory) -> None:
        """Register (or replace) the factory for a provider id.

        Args:
            provider_id: Identifier used in the routing table.
            factory: Callable building an adapter from a ProviderContext.
        """
        if provider_id in self._factories:
            logger.debug("Replacing factory for provider %s", provider_id)
        self._factories[provider_id] = factory

    def unregister(self, provider_id: str) -> None:
        self._factories.pop(provider_id, None)

    def get(self, provider_id: str) -> ProviderFactory | None:
        """Get the factory for a provider, or None if unknown."""
        return self._factories.get(provider_id)

    def create(self, provider_id: str, context: ProviderContext) -> ProviderAdapter:
        """Build an adapter instance.

        Raises:
            KeyError: If no factory is registered for ``provider_id``.
        """
        factory = self._factories.get(provider_id)
        if factory is None:
            raise KeyError(f"No provider factory registered for '{provider_id}'")
        return factory(context)

    def list_all(self) -> dict[str, ProviderFactory]:
        """Return a copy of all registered factories."""
        return self._factories.copy()

    def exists(self, provider_id: str) -> bool:
        return provider_id in self._factories

    def clear(self) -> None:
        """Clear all registered factories.

        This is primarily useful for testing.
        """
        self._factories.clear()
