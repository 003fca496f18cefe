"""Response caching.

- ResponseCache: in-process LRU + TTL cache of AIResponse objects
- PersistentCache: on-disk audio files and model/voice list records
"""

from src.core.cache.disk import PersistentCache, audio_cache_key
from src.core.cache.memory import CacheEntry, CacheKey, ResponseCache

__all__ = ["CacheEntry", "CacheKey", "PersistentCache", "ResponseCache", "audio_cache_key"]
