"""
Content caching package.

A process-local read-through cache keyed by structured ``CacheKey`` values.
Entries expire by TTL and can be dropped all at once with ``clear()``.
"""

from .read_through import CacheEntry, CacheKey, ReadThroughCache

__all__ = ["CacheEntry", "CacheKey", "ReadThroughCache"]
