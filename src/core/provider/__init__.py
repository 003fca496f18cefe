"""Provider management package.

Split into small single-responsibility components:

- ProviderAdapter / HttpProviderAdapter: contract every backend implements
- ProviderRegistry: maps provider ids to adapter factories
- ApiKeyRotator: round-robin API key pool with failure tracking
"""

from src.core.provider.api_key_rotator import ApiKeyInfo, ApiKeyRotator, ApiKeyStatus
from src.core.provider.base import HttpProviderAdapter, ProviderAdapter, ProviderContext
from src.core.provider.provider_registry import ProviderFactory, ProviderRegistry

__all__ = [
    "ApiKeyInfo",
    "ApiKeyRotator",
    "ApiKeyStatus",
    "HttpProviderAdapter",
    "ProviderAdapter",
    "ProviderContext",
    "ProviderFactory",
    "ProviderRegistry",
]
