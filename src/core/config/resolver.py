"""Merges the static routing table with persisted user selections."""

from __future__ import annotations

import logging
from collections.abc import Collection, Mapping
from datetime import datetime, timezone

from src.core.capability import Capability
from src.core.config.routing import ProviderConfig, RoutingTable
from src.core.preferences import PreferenceStore, UserCapabilityConfig

logger = logging.getLogger(__name__)


class ConfigResolver:
    """Answers routing questions for the orchestrator.

    Args:
        routing_table: Static configuration, parsed once.
        preferences: Durable store of user overrides.
    """

    def __init__(self, routing_table: RoutingTable, preferences: PreferenceStore) -> None:
        self.routing_table = routing_table
        self.preferences = preferences

    def provider_config(self, provider_id: str) -> ProviderConfig | None:
        return self.routing_table.providers.get(provider_id)

    # === User overrides ===

    def get_user_config(self, capability: Capability) -> UserCapabilityConfig | None:
        """Saved selection for a capability; storage failures read as None."""
        try:
            return self.preferences.get_capability_config(capability)
        except Exception as e:
            logger.warning("Failed to read user config for %s: %s", capability.value, e)
            return None

    def save_user_config(
        self,
        capability: Capability,
        provider_id: str,
        model: str,
        voice: str | None = None,
    ) -> UserCapabilityConfig:
        config = UserCapabilityConfig(
            provider=provider_id,
            model=model,
            voice=voice,
            last_updated=datetime.now(timezone.utc),
        )
        self.preferences.set_capability_config(capability, config)
        return config

    # === Provider order ===

    def resolve_provider_order(
        self,
        capability: Capability,
        available: Mapping[str, Collection[Capability]],
    ) -> list[str]:
        """Ordered, de-duplicated candidate providers for a capability.

        Order: user override, then the preference's primary, then its
        fallbacks. Without a preference for the capability every available
        provider that supports it is used, in ``available`` order.

        Args:
            capability: Requested capability.
            available: Instantiated providers (id -> supported capabilities),
                in registry order.
        """

        def eligible(provider_id: str) -> bool:
            supported = available.get(provider_id)
            return supported is not None and capability in supported

        ordered: list[str] = []

        def append(provider_id: str) -> None:
            if provider_id not in ordered and eligible(provider_id):
                ordered.append(provider_id)

        user_config = self.get_user_config(capability)
        if user_config is not None:
            if eligible(user_config.provider):
                append(user_config.provider)
            else:
                logger.debug(
                    "Ignoring saved provider %s for %s: not available or unsupported",
                    user_config.provider,
                    capability.value,
                )

        preference = self.routing_table.capability_preferences.get(capability)
        if preference is not None:
            for provider_id in preference.ordered:
                append(provider_id)
        else:
            for provider_id in available:
                append(provider_id)

        return ordered

    def providers_by_capability(self, capability: Capability) -> list[str]:
        """Enabled providers from the routing table that support the capability."""
        return [
            pid
            for pid, cfg in self.routing_table.providers.items()
            if cfg.enabled and cfg.supports(capability)
        ]

    def primary_provider(self, capability: Capability) -> str | None:
        preference = self.routing_table.capability_preferences.get(capability)
        return preference.primary if preference else None

    def get_provider_for_model(self, model: str) -> str | None:
        """Reverse lookup by configured model-name prefixes."""
        for provider_id, cfg in self.routing_table.providers.items():
            if cfg.enabled and cfg.matches_model(model):
                return provider_id
        return None

    # === Model & voice selection ===

    def select_model(
        self,
        provider_id: str,
        capability: Capability,
        preferred: str | None = None,
    ) -> str | None:
        """Preferred model if listed, else the configured default, else the first listed."""
        cfg = self.provider_config(provider_id)
        if cfg is None:
            return preferred
        available = cfg.models_for(capability)
        if preferred and preferred in available:
            return preferred
        default = cfg.default_model(capability)
        if default:
            return default
        return available[0] if available else None

    def get_default_model(self, provider_id: str, capability: Capability) -> str | None:
        cfg = self.provider_config(provider_id)
        return cfg.default_model(capability) if cfg else None

    def get_voice_for_provider(self, provider_id: str) -> str | None:
        """Saved voice for the provider, else the first configured voice."""
        try:
            saved = self.preferences.get_voice(provider_id)
        except Exception as e:
            logger.warning("Failed to read saved voice for %s: %s", provider_id, e)
            saved = None
        if saved:
            return saved
        cfg = self.provider_config(provider_id)
        return cfg.default_voice if cfg else None
