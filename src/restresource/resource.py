"""The :class:`Resource` base class.

Subclass :class:`Resource` once per API resource and bind a client::

    class User(Resource):
        endpoint = "/users"

    class Post(Resource):
        endpoint = "/posts"
        related = {"user": User}

    Resource.client = AsyncClient("https://api.example.com")

    post = await Post.detail(1, resolve_related=True)
    post.get("user.name")

Every subclass owns its own :class:`~restresource.cache.ResourceCache` and
:class:`~restresource.inflight.InFlightRegistry`, allocated when the class is
created, so caches are never shared along the inheritance chain.

Instances keep three views of their data:

- ``internal_attributes`` -- values exactly as they were given.
- ``attributes`` -- wire form (related instances reduced to ids), passed
  through the class's normalizers.
- ``changes`` -- entries of ``attributes`` set since construction or the
  last successful save; this is what a partial save sends.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid as uuid_lib
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Mapping, Optional, Sequence, Union
from urllib.parse import urlencode

from restresource.cache import CacheEntry, ResourceCache
from restresource.client.response import ResourceResponse
from restresource.exceptions import (
    AttributeError_,
    CacheError,
    ImproperlyConfiguredError,
    ValidationError,
)
from restresource.inflight import FlightKey, InFlightRegistry
from restresource.normalization import Normalizer, normalizer_factory
from restresource.related.manager import RelatedManager
from restresource.related.values import Relation

if TYPE_CHECKING:
    from restresource.client.async_client import AsyncClient
    from restresource.client.response import ApiResponse

logger = logging.getLogger(__name__)

Validator = Callable[[Any, "Resource"], None]

_MISSING = object()


class Resource:
    """Base class for API resources.

    Class attributes:
        endpoint: List route path, e.g. ``"/users"``.
        unique_key: Attribute holding the identity.
        cache_max_age: Seconds a fetched instance stays cached. ``math.inf``
            never expires; zero or less disables caching.
        defaults: Attribute defaults; callables are called per instance.
        related: Attribute name to Resource class, :class:`Relation`, or
            ``{"to": ..., "nested": ...}``. May be a zero-argument callable
            returning the mapping, for relations declared before their target.
        fields: Attributes a save may send. ``None`` sends everything.
        validation: Attribute name to validator (or list of validators).
            A validator is called as ``validator(value, resource)`` and
            raises :class:`~restresource.exceptions.ValidationError`.
        normalization: Attribute name to normalizer, or normalizer class name.
        batch_size: Concurrent fetches per relation batch. ``None`` is unbounded.
        client: The bound :class:`~restresource.client.AsyncClient`.
        related_manager_class: Manager class built for relation attributes.
        clock: Time source handed to each class's cache.
    """

    endpoint: ClassVar[str] = ""
    unique_key: ClassVar[str] = "id"
    cache_max_age: ClassVar[float] = 60
    defaults: ClassVar[Mapping[str, Any]] = {}
    related: ClassVar[Union[Mapping[str, Any], Callable[[], Mapping[str, Any]]]] = {}
    fields: ClassVar[Optional[Sequence[str]]] = None
    validation: ClassVar[Union[Mapping[str, Any], Callable[[], Mapping[str, Any]]]] = {}
    normalization: ClassVar[Mapping[str, Union[Normalizer, str]]] = {}
    batch_size: ClassVar[Optional[int]] = None
    client: ClassVar[Optional[AsyncClient]] = None
    related_manager_class: ClassVar[type[RelatedManager]] = RelatedManager
    clock: ClassVar[Callable[[], float]] = staticmethod(time.time)

    uuid: ClassVar[str]
    resource_cache: ClassVar[ResourceCache]
    in_flight: ClassVar[InFlightRegistry]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._setup_class_state()

    @classmethod
    def _setup_class_state(cls) -> None:
        cls.uuid = uuid_lib.uuid4().hex
        cls.resource_cache = ResourceCache(cls.__name__, clock=cls.clock)
        cls.in_flight = InFlightRegistry()

    def __init__(self, attributes: Optional[Mapping[str, Any]] = None) -> None:
        cls = type(self)
        cls.get_client()

        self.attributes: dict[str, Any] = {}
        self.internal_attributes: dict[str, Any] = {}
        self.changes: dict[str, Any] = {}
        self.managers: dict[str, RelatedManager] = {}

        for key, value in {**cls.make_defaults(), **(attributes or {})}.items():
            self._set_value(key, value, track=False)

    # ------------------------------------------------------------------ #
    # Class configuration
    # ------------------------------------------------------------------ #

    @classmethod
    def get_client(cls) -> AsyncClient:
        """Return the bound client.

        Raises:
            ImproperlyConfiguredError: If no client is bound.
        """
        if cls.client is None:
            raise ImproperlyConfiguredError(
                f"{cls.__name__} has no client. Bind one with Resource.client = AsyncClient(...)"
            )
        return cls.client

    @classmethod
    def make_defaults(cls) -> dict[str, Any]:
        return {key: value() if callable(value) else value for key, value in cls.defaults.items()}

    @classmethod
    def resource_name(cls) -> str:
        return cls.__name__

    @classmethod
    def extend(cls, **class_attributes: Any) -> type[Resource]:
        """Derive a subclass with *class_attributes* overridden.

        Example::

            CustomUser = User.extend(fields=["username", "email"])
        """
        return type(cls.__name__, (cls,), dict(class_attributes))

    @classmethod
    def get_related_map(cls) -> dict[str, Relation]:
        related = cls.related() if callable(cls.related) else cls.related
        return {key: Relation.coerce(declaration) for key, declaration in (related or {}).items()}

    @classmethod
    def get_relation(cls, key: str) -> Optional[Relation]:
        return cls.get_related_map().get(key)

    @classmethod
    def rel(cls, key: str) -> Optional[type[Resource]]:
        """Target class of the relation on *key*, or ``None``."""
        relation = cls.get_relation(key)
        return relation.to if relation is not None else None

    @classmethod
    def get_validators(cls) -> dict[str, list[Validator]]:
        validation = cls.validation() if callable(cls.validation) else cls.validation
        return {
            key: list(validators) if isinstance(validators, (list, tuple)) else [validators]
            for key, validators in (validation or {}).items()
        }

    @classmethod
    def get_normalizer(cls, key: str) -> Optional[Normalizer]:
        normalizer = cls.normalization.get(key)
        if isinstance(normalizer, str):
            return normalizer_factory(normalizer, unique_key=cls.unique_key)
        return normalizer

    # ------------------------------------------------------------------ #
    # Cache
    # ------------------------------------------------------------------ #

    @classmethod
    def cache_resource(cls, resource: Resource, replace: bool = False) -> CacheEntry:
        """Cache *resource* for ``cache_max_age`` seconds.

        With *replace*, an existing entry keeps its instance and has the new
        attributes merged onto it, so references already handed out see the
        update. Without an existing entry this is a plain insert.

        Raises:
            CacheError: If *resource* has no identity.
        """
        if resource.is_new():
            raise CacheError(
                f"Can't cache {resource.resource_name()} resource without {cls.unique_key} field"
            )
        key = str(resource.id)
        if replace and key in cls.resource_cache:
            return cls.resource_cache.replace(key, resource, cls.cache_max_age)
        return cls.resource_cache.set(key, resource, cls.cache_max_age)

    @classmethod
    def replace_cache(cls, resource: Resource) -> CacheEntry:
        """Merge *resource* onto its cached instance.

        Raises:
            CacheError: If *resource* is not cached.
        """
        if resource.is_new():
            raise CacheError(f"Can't replace cache: {resource.resource_name()} has no identity")
        return cls.resource_cache.replace(str(resource.id), resource, cls.cache_max_age)

    @classmethod
    def get_cached(cls, id: Any) -> Optional[CacheEntry]:
        """Fresh cache entry for *id*, or ``None``."""
        return cls.resource_cache.get(str(id))

    @classmethod
    def get_cached_all(cls) -> list[CacheEntry]:
        return cls.resource_cache.entries()

    @classmethod
    def clear_cache(cls) -> None:
        cls.resource_cache.clear()

    # ------------------------------------------------------------------ #
    # Routes and fetching
    # ------------------------------------------------------------------ #

    @classmethod
    def list_route_path(cls, query: Optional[Mapping[str, Any]] = None) -> str:
        if query:
            return f"{cls.endpoint}?{urlencode(query, doseq=True)}"
        return cls.endpoint

    @classmethod
    def detail_route_path(cls, id: Any, query: Optional[Mapping[str, Any]] = None) -> str:
        path = f"{cls.endpoint}/{id}"
        if query:
            path = f"{path}?{urlencode(query, doseq=True)}"
        return path

    @classmethod
    def from_server(cls, attributes: Mapping[str, Any]) -> Resource:
        """Build an instance from a response body and cache it if it has an identity."""
        resource = cls(attributes)
        if not resource.is_new():
            cls.cache_resource(resource)
        return resource

    @classmethod
    async def list(
        cls,
        query: Optional[Mapping[str, Any]] = None,
        *,
        resolve_related: bool = False,
        resolve_related_deep: bool = False,
    ) -> ResourceResponse:
        """GET the list route and return every parsed instance with pagination accessors."""
        response = await cls.get_client().list(cls, dict(query) if query else None)
        await asyncio.gather(
            *(
                resource._apply_related_options(resolve_related, resolve_related_deep)
                for resource in response.resources
            )
        )
        return response

    @classmethod
    async def detail(
        cls,
        id: Any,
        *,
        use_cache: bool = True,
        resolve_related: bool = False,
        resolve_related_deep: bool = False,
        query: Optional[Mapping[str, Any]] = None,
    ) -> Resource:
        """Fetch one instance by *id*.

        A fresh cache entry is returned without a request unless *use_cache*
        is false. Concurrent calls for the same *id* share one request and
        all receive the same instance; each caller then applies its own
        relation options. If that request fails every caller sharing it gets
        the same exception. While the first caller is still resolving
        relations, lookups of the same *id* (from a self-referential or
        cyclic relation) receive the parsed instance right away.

        Args:
            id: Identity of the instance.
            use_cache: Return a fresh cached instance when there is one.
            resolve_related: Resolve the instance's relations one level deep.
            resolve_related_deep: Resolve relations recursively.
            query: Querystring parameters for the detail route.
        """
        if use_cache:
            cached = cls.get_cached(id)
            if cached is not None:
                logger.debug("Cache hit for %s %s", cls.resource_name(), id)
                resource = cached.resource
                await resource._apply_related_options(resolve_related, resolve_related_deep)
                return resource

        key = FlightKey(cls.uuid, str(id))
        if key in cls.in_flight:
            resource = cls.in_flight.provided(key)
            if resource is None:
                logger.debug("Joining in-flight request for %s %s", cls.resource_name(), id)
                resource = await cls.in_flight.join(key)
            await resource._apply_related_options(resolve_related, resolve_related_deep)
            return resource

        cls.in_flight.start(key)
        try:
            response = await cls.get_client().detail(cls, id, dict(query) if query else None)
            resource = response.resources[-1]
            # relations pointing back at this key get the parsed instance
            cls.in_flight.provide(key, resource)
            await resource._apply_related_options(resolve_related, resolve_related_deep)
        except Exception as exc:
            logger.debug(
                "Request for %s %s failed, rejecting %s waiter(s)",
                cls.resource_name(), id, cls.in_flight.waiting(key),
            )
            cls.in_flight.reject(key, exc)
            raise
        except BaseException:
            cls.in_flight.cancel(key)
            raise

        cls.in_flight.resolve(key, resource)
        return resource

    @classmethod
    def wrap(cls, path: str, query: Optional[Mapping[str, Any]] = None) -> RouteWrapper:
        """Route relative to the list route, e.g. ``User.wrap("/me")`` -> ``/users/me``."""
        assert path.startswith("/"), f"Wrapped path must start with '/', got {path!r}"
        return RouteWrapper(cls.get_client(), f"{cls.endpoint}{path}", query)

    # ------------------------------------------------------------------ #
    # Attributes
    # ------------------------------------------------------------------ #

    @property
    def id(self) -> Any:
        return self.attributes.get(type(self).unique_key)

    @id.setter
    def id(self, value: Any) -> None:
        raise AttributeError_(
            f"Cannot set id manually. Use resource.set({type(self).unique_key!r}, value)"
        )

    def is_new(self) -> bool:
        return self.id is None or self.id == ""

    def _set_value(self, key: str, value: Any, track: bool = True) -> None:
        cls = type(self)
        relation = cls.get_relation(key)
        wire = value

        if relation is not None:
            items = value if isinstance(value, (list, tuple)) else [value]
            for item in items:
                if isinstance(item, Resource):
                    assert isinstance(item, relation.to), (
                        f"{cls.resource_name()}.{key} expected {relation.to.resource_name()}, "
                        f"received {item.resource_name()}"
                    )
            manager = cls.related_manager_class(
                relation.to, value, nested=relation.nested, batch_size=cls.batch_size
            )
            self.managers[key] = manager
            wire = manager.to_json()

        normalizer = cls.get_normalizer(key)
        if normalizer is not None:
            wire = normalizer(wire)

        previous = self.attributes.get(key, _MISSING)
        self.internal_attributes[key] = value
        self.attributes[key] = wire
        if track and (previous is _MISSING or previous != wire):
            self.changes[key] = wire

    def set(self, key: str, value: Any) -> Resource:
        """Set attribute *key*; relation keys get a new manager.

        Raises:
            AttributeError_: If *key* is a dotted path.
        """
        if "." in key:
            raise AttributeError_("Can't use dot notation when setting value of nested resource")
        self._set_value(key, value)
        return self

    def get(self, key: Optional[str] = None) -> Any:
        """Read an attribute.

        Without *key*, returns :meth:`to_dict`. A relation key returns the
        related instance once a single relation is resolved, and the manager
        otherwise. Dotted paths are followed through resolved relations and
        plain mappings; a many relation maps the rest of the path over its
        loaded instances.

        Raises:
            AttributeError_: If a dotted path crosses an unresolved relation.
        """
        if key is None:
            return self.to_dict()

        head, _, rest = key.partition(".")
        manager = self.managers.get(head)

        if manager is not None:
            if not rest:
                if manager.resolved and not manager.many:
                    resources = manager.resources
                    return resources[0] if resources else None
                return manager
            if not manager.resolved:
                raise AttributeError_(
                    f"Can't read related property {head} before resolve_related() is called"
                )
            if manager.many:
                return [resource.get(rest) for resource in manager.resources]
            resources = manager.resources
            return resources[0].get(rest) if resources else None

        value = self.attributes.get(head)
        for piece in rest.split(".") if rest else ():
            if not isinstance(value, Mapping):
                return None
            value = value.get(piece)
        return value

    async def resolve_attribute(self, key: str) -> Any:
        """Like :meth:`get`, but resolves relations along the path as needed."""
        try:
            return self.get(key)
        except AttributeError_:
            head, _, rest = key.partition(".")
            manager = self.managers[head]
            await manager.all()
            values = await asyncio.gather(
                *(resource.resolve_attribute(rest) for resource in manager.resources)
            )
            if manager.many:
                return list(values)
            return values[0] if values else None

    get_async = resolve_attribute

    def update_from(self, other: Resource) -> None:
        """Merge *other*'s attributes and managers onto this instance in place.

        A resolved manager is kept when the incoming one is an unresolved
        manager over the same keys.
        """
        self.internal_attributes.update(other.internal_attributes)
        self.attributes.update(other.attributes)
        for key, manager in other.managers.items():
            current = self.managers.get(key)
            if (
                current is not None
                and current.resolved
                and not manager.resolved
                and current.primary_keys == manager.primary_keys
            ):
                continue
            self.managers[key] = manager

    def to_dict(self, _ancestors: frozenset[int] = frozenset()) -> dict[str, Any]:
        """Attributes with resolved relations expanded into nested dicts.

        An instance that already appears higher up the same branch is
        rendered as its id.
        """
        ancestors = _ancestors | {id(self)}
        data = dict(self.attributes)
        for key, manager in self.managers.items():
            if not manager.resolved:
                continue
            expanded = [
                resource.id if id(resource) in ancestors else resource.to_dict(ancestors)
                for resource in manager.resources
            ]
            if manager.many:
                data[key] = expanded
            elif expanded:
                data[key] = expanded[0]
        return data

    def to_json(self) -> dict[str, Any]:
        return self.to_dict()

    # ------------------------------------------------------------------ #
    # Relations
    # ------------------------------------------------------------------ #

    def _visit_key(self) -> tuple[str, str]:
        identity = f"new:{id(self)}" if self.is_new() else str(self.id)
        return (type(self).uuid, identity)

    async def _apply_related_options(self, resolve_related: bool, resolve_related_deep: bool) -> None:
        if resolve_related_deep:
            await self.resolve_related_deep()
        elif resolve_related:
            await self.resolve_related()

    async def resolve_related(
        self,
        deep: bool = False,
        related_keys: Optional[Sequence[str]] = None,
        related_sub_keys: Optional[Sequence[str]] = None,
        _visited: Optional[set[tuple[str, str]]] = None,
    ) -> Resource:
        """Load every related resource of this instance.

        Args:
            deep: Also resolve the relations of every loaded resource,
                recursively. Each ``(class, identity)`` pair is visited once,
                so cyclic graphs terminate.
            related_keys: Only resolve these relation names.
            related_sub_keys: Relation names to resolve one level down when
                *deep*; deeper levels resolve everything.
        """
        visited = set() if _visited is None else _visited
        visited.add(self._visit_key())

        managers = [
            manager
            for key, manager in self.managers.items()
            if related_keys is None or key in related_keys
        ]
        await asyncio.gather(*(manager.all() for manager in managers))

        if deep:
            children = []
            for manager in managers:
                for resource in manager.resources:
                    visit_key = resource._visit_key()
                    if visit_key not in visited:
                        visited.add(visit_key)
                        children.append(resource)
            await asyncio.gather(
                *(
                    child.resolve_related(deep=True, related_keys=related_sub_keys, _visited=visited)
                    for child in children
                )
            )
        return self

    async def resolve_related_deep(
        self,
        related_keys: Optional[Sequence[str]] = None,
        related_sub_keys: Optional[Sequence[str]] = None,
    ) -> Resource:
        return await self.resolve_related(
            deep=True, related_keys=related_keys, related_sub_keys=related_sub_keys
        )

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def validate(self) -> list[ValidationError]:
        """Run every validator and return the errors they raised."""
        errors = []
        for key, validators in type(self).get_validators().items():
            for validator in validators:
                try:
                    validator(self.attributes.get(key), self)
                except ValidationError as exc:
                    errors.append(exc)
        return errors

    def _payload(self, values: Mapping[str, Any], fields: Optional[Sequence[str]]) -> dict[str, Any]:
        allowed = fields if fields is not None else type(self).fields
        if allowed is None:
            return dict(values)
        return {key: value for key, value in values.items() if key in allowed}

    async def save(
        self,
        *,
        fields: Optional[Sequence[str]] = None,
        partial: bool = True,
        force: bool = False,
        replace_cache: bool = True,
    ) -> ResourceResponse:
        """Persist this instance.

        New instances are POSTed to the list route with all attributes.
        Saved instances send ``changes`` as a PATCH, or all attributes as a
        PUT when *partial* is false.

        Args:
            fields: Only send these attributes; overrides the class ``fields``.
            partial: PATCH changes instead of PUTting everything.
            force: Save even when validation fails.
            replace_cache: Merge onto the cached instance instead of
                replacing the cache slot.

        Raises:
            ValidationError: Aggregating every validator failure, unless *force*.
        """
        errors = self.validate()
        if errors and not force:
            raise ValidationError(errors)

        cls = type(self)
        client = cls.get_client()
        if self.is_new():
            response = await client.post(
                cls.list_route_path(), json_body=self._payload(self.attributes, fields)
            )
        elif not partial:
            response = await client.put(
                cls.detail_route_path(self.id), json_body=self._payload(self.attributes, fields)
            )
        else:
            response = await client.patch(
                cls.detail_route_path(self.id), json_body=self._payload(self.changes, fields)
            )

        self.changes = {}
        if isinstance(response.data, Mapping):
            for key, value in response.data.items():
                self._set_value(key, value, track=False)
        if not self.is_new():
            self.cache(replace=replace_cache)
        logger.debug("Saved %s", self)
        return ResourceResponse(response=response, resources=[self])

    async def delete(self) -> ApiResponse:
        """DELETE this instance and drop it from the cache."""
        assert not self.is_new(), f"Can't delete unsaved {self.resource_name()}"
        cls = type(self)
        response = await cls.get_client().delete(cls.detail_route_path(self.id))
        cls.resource_cache.invalidate(str(self.id))
        return response

    async def update(self) -> Resource:
        """Refetch this instance, bypassing the cache, and merge the result in place."""
        cls = type(self)
        fresh = await cls.detail(self.id, use_cache=False)
        if fresh is not self:
            self.update_from(fresh)
            cls.cache_resource(self)
        return self

    def cache(self, replace: bool = False) -> Resource:
        type(self).cache_resource(self, replace=replace)
        return self

    def get_cached_entry(self) -> Optional[CacheEntry]:
        return type(self).get_cached(self.id)

    def wrap_detail(self, path: str, query: Optional[Mapping[str, Any]] = None) -> RouteWrapper:
        """Route relative to this instance, e.g. ``user.wrap_detail("/avatar")``."""
        assert path.startswith("/"), f"Wrapped path must start with '/', got {path!r}"
        assert not self.is_new(), f"Can't wrap a route on unsaved {self.resource_name()}"
        cls = type(self)
        return RouteWrapper(cls.get_client(), f"{cls.detail_route_path(self.id)}{path}", query)

    def __str__(self) -> str:
        return f"{self.resource_name()} {'(New)' if self.is_new() else self.id}"

    def __repr__(self) -> str:
        return f"<{self.resource_name()} {self.attributes!r}>"


Resource._setup_class_state()


class RouteWrapper:
    """A request route relative to a Resource route.

    Args:
        client: Client the requests are sent through.
        path: Full request path.
        query: Querystring parameters appended to *path*.
    """

    def __init__(
        self,
        client: AsyncClient,
        path: str,
        query: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.client = client
        self.path = path
        self.query = dict(query or {})

    @property
    def url(self) -> str:
        if self.query:
            return f"{self.path}?{urlencode(self.query, doseq=True)}"
        return self.path

    async def get(self, **kwargs: Any) -> ApiResponse:
        return await self.client.get(self.url, **kwargs)

    async def post(self, json_body: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.client.post(self.url, json_body=json_body, **kwargs)

    async def put(self, json_body: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.client.put(self.url, json_body=json_body, **kwargs)

    async def patch(self, json_body: Any = None, **kwargs: Any) -> ApiResponse:
        return await self.client.patch(self.url, json_body=json_body, **kwargs)

    async def delete(self, **kwargs: Any) -> ApiResponse:
        return await self.client.delete(self.url, **kwargs)

    def __repr__(self) -> str:
        return f"<RouteWrapper {self.url}>"
