"""In-memory, time-bounded cache of Resource instances.

Each :class:`~restresource.Resource` subclass owns one :class:`ResourceCache`
mapping identity strings to :class:`CacheEntry` objects. Entries are never
swept in the background: a stale entry is simply reported as absent when it
is read. The clock is injectable so expiry can be tested deterministically.

Entries hold resources by reference. Replacing an entry merges the new
attributes onto the already cached instance, so every caller holding that
instance observes the update.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from restresource.exceptions import CacheError

if TYPE_CHECKING:
    from restresource.resource import Resource

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class CacheEntry:
    """A cached resource and the clock time (seconds) at which it goes stale."""

    resource: Resource
    expires: float

    def is_fresh(self, now: float) -> bool:
        return self.expires > now


class ResourceCache:
    """Identity-keyed store of :class:`CacheEntry` objects with lazy expiry.

    Args:
        name: Owner name used in log messages.
        clock: Zero-argument callable returning the current time in seconds.

    Example::

        cache = ResourceCache("Post", clock=lambda: 100.0)
        cache.set("1", post, max_age=60)
        cache.get("1")          # entry, expires at 160.0
        cache.clock = lambda: 200.0
        cache.get("1")          # None
    """

    def __init__(self, name: str = "", clock: Clock = time.time) -> None:
        self.name = name
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def expiry(self, max_age: float) -> float:
        """Return the expiry time for an entry written now with *max_age* seconds."""
        return self.clock() + max_age

    def set(self, key: str, resource: Resource, max_age: float) -> CacheEntry:
        """Overwrite the slot for *key* with a new entry."""
        entry = CacheEntry(resource=resource, expires=self.expiry(max_age))
        self._entries[key] = entry
        return entry

    def replace(self, key: str, resource: Resource, max_age: float) -> CacheEntry:
        """Merge *resource* onto the cached instance for *key* and refresh its expiry.

        The entry is looked up regardless of staleness, so a stale instance
        is revived in place rather than swapped out.

        Raises:
            CacheError: If no entry exists for *key*.
        """
        entry = self._entries.get(key)
        if entry is None:
            raise CacheError(f"Can't replace cache: {self.name} {key} isn't cached")
        if entry.resource is not resource:
            entry.resource.update_from(resource)
        entry.expires = self.expiry(max_age)
        return entry

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for *key* only if it is still fresh."""
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self.clock()):
            return entry
        return None

    def entries(self) -> list[CacheEntry]:
        """Return every fresh entry."""
        now = self.clock()
        return [entry for entry in self._entries.values() if entry.is_fresh(now)]

    def invalidate(self, key: str) -> None:
        """Drop the entry for *key*, if any."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        """Return ``size`` (all slots) and ``fresh`` (unexpired slots) counts."""
        return {"size": len(self._entries), "fresh": len(self.entries())}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
