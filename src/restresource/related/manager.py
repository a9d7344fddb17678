"""Batched, deferred resolution of related resources.

A :class:`RelatedManager` wraps the raw value of a relation attribute (an id,
a list of ids, embedded records, or live Resource instances) and turns it
into materialized instances of the target class. At most ``batch_size``
detail fetches run concurrently per call:

- :meth:`RelatedManager.resolve` fetches the first batch and queues the
  remaining keys as deferred loaders.
- :meth:`RelatedManager.next` runs the next batch of deferred loaders.
- :meth:`RelatedManager.all` drains every deferred loader.

Example::

    manager = group.get("todos")            # unresolved manager
    await manager.resolve()                 # first 20 todos
    await manager.next()                    # todos 21-40
    todos = await manager.all()             # everything
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from restresource.exceptions import AttributeError_
from restresource.related.values import (
    EmbeddedRecord,
    Empty,
    LiveEntity,
    ManyEmbedded,
    ManyLiveEntities,
    RelationValue,
    classify,
)

if TYPE_CHECKING:
    from restresource.resource import Resource

logger = logging.getLogger(__name__)

DeferredLoader = Callable[[], Awaitable["Resource"]]


class RelatedManager:
    """Resolve the resources a relation attribute refers to.

    Args:
        to: Target Resource class.
        value: Raw attribute value.
        nested: The attribute holds complete embedded records, which are
            built into instances without fetching.
        batch_size: Maximum concurrent fetches per :meth:`resolve` /
            :meth:`next` call. ``None`` means unbounded.
    """

    def __init__(
        self,
        to: type[Resource],
        value: Any,
        nested: bool = False,
        batch_size: Optional[int] = None,
    ) -> None:
        if batch_size is not None and batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")

        self.to = to
        self.value = value
        self.nested = nested
        self.batch_size = batch_size
        self.content: RelationValue = classify(value)
        self.many: bool = self.content.many
        self.primary_keys: list[str] = self.get_primary_keys()
        self.resolved = not self.primary_keys
        self.deferred: list[DeferredLoader] = []
        self._resources: dict[str, Resource] = {}

        if isinstance(self.content, (LiveEntity, ManyLiveEntities)):
            self.resolve_from_objects(self.content.resources)
        elif nested and isinstance(self.content, (EmbeddedRecord, ManyEmbedded)):
            self.resolve_from_objects(
                [self.to.from_server(dict(record)) for record in self.content.records]
            )

    def get_primary_keys(self) -> list[str]:
        """Stringified identities the raw value refers to, in order."""
        return self.content.primary_keys(self.to.unique_key)

    def can_auto_resolve(self) -> bool:
        """``True`` when the value is embedded and the relation is nested."""
        return self.nested and isinstance(self.content, (EmbeddedRecord, ManyEmbedded))

    # ------------------------------------------------------------------ #
    # Fetching
    # ------------------------------------------------------------------ #

    async def get_one(self, id: Any, **options: Any) -> Resource:
        """Fetch one target by *id* through the target class's :meth:`detail`.

        *options* are forwarded to ``detail``.
        """
        resource = await self.to.detail(id, **options)
        assert resource.resource_name() == self.to.resource_name(), (
            f"Related class detail() returned invalid instance: "
            f"{resource.resource_name()} (returned) != {self.to.resource_name()} (expected)"
        )
        self._resources[str(resource.id)] = resource
        return resource

    async def get_one_at_index(self, index: int, **options: Any) -> Resource:
        """Same as :meth:`get_one` but looks the id up by position."""
        return await self.get_one(self.primary_keys[index], **options)

    def get_all_loaded(self) -> list[Resource]:
        """Loaded resources, or every cached target if not resolved yet.

        Unlike :attr:`resources` this never raises.
        """
        try:
            return self.resources
        except AttributeError_:
            loaded = []
            for key in self.primary_keys:
                cached = self.to.get_cached(key)
                if cached is not None:
                    loaded.append(cached.resource)
            return loaded

    async def resolve(self, **options: Any) -> list[Resource]:
        """Fetch the first batch of targets and queue the rest as deferred loaders.

        Calling it again on a resolved manager returns the loaded resources
        without fetching.

        Returns:
            The resources loaded so far. With more keys than ``batch_size``
            this is only the first batch.
        """
        if self.resolved:
            return self.resources

        limit = len(self.primary_keys) if self.batch_size is None else self.batch_size
        batch = self.primary_keys[:limit]
        self.deferred = [
            functools.partial(self.get_one, key, **options) for key in self.primary_keys[limit:]
        ]
        logger.debug(
            "Resolving %s %s of %s (%s deferred)",
            len(batch), self.to.resource_name(), len(self.primary_keys), len(self.deferred),
        )

        await asyncio.gather(*(self.get_one(key, **options) for key in batch))
        self.resolved = True
        return self.resources

    async def next(self, **options: Any) -> list[Resource]:
        """Run the next batch of deferred loaders, resolving first if needed.

        Returns:
            The resources loaded by this call.
        """
        if not self.resolved:
            return await self.resolve(**options)

        limit = len(self.deferred) if self.batch_size is None else self.batch_size
        batch, self.deferred = self.deferred[:limit], self.deferred[limit:]
        if batch:
            logger.debug(
                "Loading next %s %s (%s deferred)",
                len(batch), self.to.resource_name(), len(self.deferred),
            )
        return list(await asyncio.gather(*(loader() for loader in batch)))

    async def all(self, **options: Any) -> list[Resource]:
        """Drain every deferred loader and return all loaded resources."""
        await self.next(**options)
        while self.deferred:
            await self.next(**options)
        return self.resources

    def resolve_from_objects(self, resources: Any) -> None:
        """Adopt already materialized *resources* and mark the manager resolved."""
        for resource in resources:
            self._resources[str(resource.id)] = resource
        self.deferred = []
        self.resolved = True

    # ------------------------------------------------------------------ #
    # Mutation
    # ------------------------------------------------------------------ #

    def add(self, resource: Resource) -> None:
        """Append a saved *resource* to a many relation.

        The raw value keeps its shape: records get the resource's attributes,
        id lists get its id, and lists of instances get the instance.
        """
        assert self.many, "RelatedManager must be many to add()"
        assert not resource.is_new(), "Resource must be saved before adding to RelatedManager"
        assert type(resource) is self.to, (
            f"RelatedManager add() expected {self.to.resource_name()}, "
            f"received {resource.resource_name()}"
        )

        if isinstance(self.content, ManyEmbedded):
            item: Any = resource.to_dict()
        elif isinstance(self.content, ManyLiveEntities):
            item = resource
        else:
            item = resource.id

        self.value = [*(self.value or []), item]
        self.content = classify(self.value)
        self._resources[str(resource.id)] = resource

    def from_value(self, value: Any) -> RelatedManager:
        """A new manager of the same class and target over *value*."""
        return type(self)(self.to, value, nested=self.nested, batch_size=self.batch_size)

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def resources(self) -> list[Resource]:
        """Loaded resources in primary key order, each instance once.

        Instances added with :meth:`add` follow the ones the raw value
        referred to.

        Raises:
            AttributeError_: If the manager has not been resolved yet.
        """
        if not self.resolved:
            raise AttributeError_(
                f"Can't read results of {type(self).__name__}.resources, "
                f"{self.to.resource_name()} must resolve() first"
            )
        ordered = [
            self._resources[key] for key in dict.fromkeys(self.primary_keys) if key in self._resources
        ]
        extra = [r for key, r in self._resources.items() if key not in self.primary_keys]
        return ordered + extra

    def __len__(self) -> int:
        return len(self.primary_keys)

    def to_json(self) -> Any:
        """Raw value in wire form (instances reduced to their id)."""
        if isinstance(self.content, Empty):
            return [] if self.many else None
        if isinstance(self.content, LiveEntity):
            return self.content.resource.id
        if isinstance(self.content, ManyLiveEntities):
            return [resource.id for resource in self.content.resources]
        if isinstance(self.value, tuple):
            return list(self.value)
        return self.value

    def __repr__(self) -> str:
        state = "resolved" if self.resolved else "unresolved"
        return f"<{type(self).__name__} {self.to.resource_name()} {self.primary_keys} ({state})>"
