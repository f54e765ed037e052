"""
Serving Module

Result caching and the read-only HTTP API.
"""
from .cache import CacheManager, InsightCache, MemoryCacheBackend, RedisCacheBackend, make_cache_key

__all__ = ["CacheManager", "InsightCache", "MemoryCacheBackend", "RedisCacheBackend", "make_cache_key"]
