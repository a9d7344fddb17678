"""Relation declarations and the shapes a related value can take.

A raw relation value is classified once, by :func:`classify`, into one of
the tagged variants below. Each variant knows how to produce the stringified
primary keys it refers to, so the manager never has to probe the value's
type again.

========================  =====================================
Variant                   Raw value
========================  =====================================
:class:`Empty`            ``None``, ``""`` or ``[]``
:class:`Scalar`           a bare identity (``5``, ``"abc"``)
:class:`ManyScalars`      a list of identities
:class:`EmbeddedRecord`   a mapping of attributes
:class:`ManyEmbedded`     a list of mappings
:class:`LiveEntity`       a Resource instance
:class:`ManyLiveEntities` a list of Resource instances
========================  =====================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Mapping, Union

from restresource.exceptions import ImproperlyConfiguredError

if TYPE_CHECKING:
    from restresource.resource import Resource


@dataclass(frozen=True)
class Relation:
    """Declared relation from an attribute to a target Resource class.

    Attributes:
        to: The target Resource subclass.
        nested: The API embeds complete target records in the attribute, so
            they can be built without fetching.
    """

    to: type[Resource]
    nested: bool = False

    @classmethod
    def coerce(cls, declaration: Any) -> Relation:
        """Accept a Resource class, a :class:`Relation`, or ``{"to": ..., "nested": ...}``."""
        from restresource.resource import Resource

        if isinstance(declaration, Relation):
            relation = declaration
        elif isinstance(declaration, Mapping):
            relation = cls(to=declaration.get("to"), nested=bool(declaration.get("nested", False)))
        else:
            relation = cls(to=declaration)

        if not (isinstance(relation.to, type) and issubclass(relation.to, Resource)):
            raise ImproperlyConfiguredError(
                f"Relation expected a Resource class, received {relation.to!r}. "
                "Please double check the related definitions on the class."
            )
        return relation


def _record_key(record: Mapping[str, Any], unique_key: str) -> str:
    assert record.get(unique_key) is not None, (
        f"Embedded related record has no '{unique_key}' field: {dict(record)!r}"
    )
    return str(record[unique_key])


def _resource_key(resource: Resource) -> str:
    assert not resource.is_new(), f"Related {resource.resource_name()} must be saved first"
    return str(resource.id)


@dataclass(frozen=True)
class Empty:
    many: bool = False

    def primary_keys(self, unique_key: str) -> list[str]:
        return []


@dataclass(frozen=True)
class Scalar:
    many: ClassVar[bool] = False
    identity: Any

    def primary_keys(self, unique_key: str) -> list[str]:
        return [str(self.identity)]


@dataclass(frozen=True)
class ManyScalars:
    many: ClassVar[bool] = True
    identities: tuple[Any, ...]

    def primary_keys(self, unique_key: str) -> list[str]:
        return [str(identity) for identity in self.identities]


@dataclass(frozen=True)
class EmbeddedRecord:
    many: ClassVar[bool] = False
    record: Mapping[str, Any]

    def primary_keys(self, unique_key: str) -> list[str]:
        return [_record_key(self.record, unique_key)]

    @property
    def records(self) -> tuple[Mapping[str, Any], ...]:
        return (self.record,)


@dataclass(frozen=True)
class ManyEmbedded:
    many: ClassVar[bool] = True
    records: tuple[Mapping[str, Any], ...]

    def primary_keys(self, unique_key: str) -> list[str]:
        return [_record_key(record, unique_key) for record in self.records]


@dataclass(frozen=True)
class LiveEntity:
    many: ClassVar[bool] = False
    resource: Resource

    def primary_keys(self, unique_key: str) -> list[str]:
        return [_resource_key(self.resource)]

    @property
    def resources(self) -> tuple[Resource, ...]:
        return (self.resource,)


@dataclass(frozen=True)
class ManyLiveEntities:
    many: ClassVar[bool] = True
    resources: tuple[Resource, ...]

    def primary_keys(self, unique_key: str) -> list[str]:
        return [_resource_key(resource) for resource in self.resources]


RelationValue = Union[
    Empty, Scalar, ManyScalars, EmbeddedRecord, ManyEmbedded, LiveEntity, ManyLiveEntities
]


def classify(value: Any) -> RelationValue:
    """Classify a raw relation value; lists are judged by their first element."""
    from restresource.resource import Resource

    if value is None or value == "":
        return Empty(many=False)

    if isinstance(value, (list, tuple)):
        if not value:
            return Empty(many=True)
        first = value[0]
        if isinstance(first, Resource):
            return ManyLiveEntities(tuple(value))
        if isinstance(first, Mapping):
            return ManyEmbedded(tuple(value))
        return ManyScalars(tuple(value))

    if isinstance(value, Resource):
        return LiveEntity(value)
    if isinstance(value, Mapping):
        return EmbeddedRecord(value)
    return Scalar(value)
