"""Single-flight bookkeeping for detail fetches.

An :class:`InFlightRegistry` records which ``(resource class, identity)``
pairs currently have a network request outstanding. The first caller for a
key calls :meth:`~InFlightRegistry.start` and issues the request; every later
caller for the same key calls :meth:`~InFlightRegistry.join` and awaits the
returned future instead of sending a duplicate request. When the request
settles the first caller releases all waiters with :meth:`~InFlightRegistry.resolve`,
:meth:`~InFlightRegistry.reject` or :meth:`~InFlightRegistry.cancel`, each
of which also removes the key.

Between parsing the response and releasing its waiters, the first caller
may still be resolving relations. It records the parsed instance with
:meth:`~InFlightRegistry.provide` so that lookups of the same key made
during that window get the instance from :meth:`~InFlightRegistry.provided`
instead of waiting on themselves.

Keys are :class:`FlightKey` tuples rather than concatenated strings, so no
two distinct ``(type, identity)`` pairs can collide.
"""

from __future__ import annotations

import asyncio
from typing import Any, NamedTuple, Optional


class FlightKey(NamedTuple):
    """Composite key of a resource class's unique id and an identity string."""

    type_id: str
    identity: str


class InFlightRegistry:
    """Maps in-flight :class:`FlightKey` values to their queued waiter futures."""

    def __init__(self) -> None:
        self._waiters: dict[FlightKey, list[asyncio.Future[Any]]] = {}
        self._provided: dict[FlightKey, Any] = {}

    def is_in_flight(self, key: FlightKey) -> bool:
        return key in self._waiters

    def start(self, key: FlightKey) -> None:
        """Mark *key* as in flight with an empty waiter list.

        Raises:
            RuntimeError: If a request for *key* is already in flight.
        """
        if key in self._waiters:
            raise RuntimeError(f"A request for {key} is already in flight")
        self._waiters[key] = []

    def join(self, key: FlightKey) -> asyncio.Future[Any]:
        """Queue a waiter on the in-flight request for *key* and return its future."""
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters[key].append(future)
        return future

    def waiting(self, key: FlightKey) -> int:
        """Number of callers queued behind the request for *key*."""
        return len(self._waiters.get(key, ()))

    def provide(self, key: FlightKey, value: Any) -> None:
        """Record the parsed result of the in-flight request for *key*.

        Raises:
            KeyError: If no request for *key* is in flight.
        """
        if key not in self._waiters:
            raise KeyError(key)
        self._provided[key] = value

    def provided(self, key: FlightKey) -> Optional[Any]:
        """The value recorded with :meth:`provide` for *key*, or ``None``."""
        return self._provided.get(key)

    def _settle(self, key: FlightKey) -> list[asyncio.Future[Any]]:
        self._provided.pop(key, None)
        return self._waiters.pop(key, [])

    def resolve(self, key: FlightKey, value: Any) -> None:
        """Release every waiter on *key* with *value* and forget the key."""
        for future in self._settle(key):
            if not future.done():
                future.set_result(value)

    def reject(self, key: FlightKey, exc: BaseException) -> None:
        """Fail every waiter on *key* with *exc* and forget the key."""
        for future in self._settle(key):
            if not future.done():
                future.set_exception(exc)

    def cancel(self, key: FlightKey) -> None:
        """Cancel every waiter on *key* and forget the key."""
        for future in self._settle(key):
            future.cancel()

    def __len__(self) -> int:
        return len(self._waiters)

    def __contains__(self, key: object) -> bool:
        return key in self._waiters
