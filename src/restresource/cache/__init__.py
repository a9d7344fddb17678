"""In-memory resource caching for restresource.

This package provides :class:`ResourceCache`, the per-class store of
:class:`CacheEntry` objects used by :class:`~restresource.Resource`.
Entries are keyed by identity and expire ``cache_max_age`` seconds after
they were written; expiry is checked lazily on read against an injectable
clock.
"""

from restresource.cache.cache import CacheEntry, ResourceCache

__all__ = ["CacheEntry", "ResourceCache"]
