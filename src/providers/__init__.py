"""Built-in provider adapters."""

from src.core.provider.provider_registry import ProviderRegistry
from src.providers.google import GoogleProvider
from src.providers.openai import OpenAIProvider

BUILTIN_PROVIDERS = {
    "openai": OpenAIProvider,
    "google": GoogleProvider,
}


def register_builtin_providers(registry: ProviderRegistry) -> ProviderRegistry:
    """Register factories for every adapter shipped with the package."""
    for provider_id, adapter_cls in BUILTIN_PROVIDERS.items():
        registry.register(provider_id, adapter_cls)
    return registry


__all__ = ["GoogleProvider", "OpenAIProvider", "register_builtin_providers"]
