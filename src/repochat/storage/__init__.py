"""
Data persistence utilities for packed repository content.
"""

from .cache import CacheEntry, CacheMetadata, ContentCache, make_cache_key

__all__ = ["CacheEntry", "CacheMetadata", "ContentCache", "make_cache_key"]
