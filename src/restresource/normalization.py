"""Attribute normalizers.

A Resource class maps attribute names to normalizers in its
``normalization`` attribute. Every value written to that attribute is passed
through the normalizer before it lands in ``attributes`` and ``changes``::

    class User(Resource):
        endpoint = "/users"
        normalization = {"followers": NumberNormalizer()}

    User({"followers": "5"}).attributes["followers"]   # 5

Plain callables taking one value are accepted as normalizers too.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Union

from restresource.exceptions import ImproperlyConfiguredError


def _to_number(value: Any = 0) -> int | float:
    """Coerce *value* to ``int`` when it is integral, else ``float``."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    if isinstance(value, bool):
        return int(value)
    text = str(value).strip()
    if not text:
        return 0
    try:
        return int(text)
    except ValueError:
        return float(text)


class BaseNormalizer:
    """Coerce values to ``normalize_to``.

    Related values are reduced to their identity first: Resource instances
    become their ``id`` and mappings their ``unique_key`` entry. Lists are
    normalized element-wise. ``None`` passes through unless the normalizer
    is not ``nullable``, in which case ``normalize_to()`` is returned.
    """

    normalize_to: Callable[..., Any] = str
    nullable: bool = True

    def __init__(self, unique_key: str = "id", nullable: Optional[bool] = None) -> None:
        self.unique_key = unique_key
        if nullable is not None:
            self.nullable = nullable

    def normalize(self, value: Any) -> Any:
        from restresource.resource import Resource

        if value is None:
            return value if self.nullable else self.normalize_to()
        if isinstance(value, Resource):
            return self.normalize(value.id)
        if isinstance(value, Mapping):
            return self.normalize(value.get(self.unique_key))
        if isinstance(value, (list, tuple)):
            return [self.normalize(item) for item in value]
        if isinstance(value, bool) and self.normalize_to is str:
            return "true" if value else ""
        if type(value) is self.normalize_to:
            return value
        return self.normalize_to(value)

    def __call__(self, value: Any) -> Any:
        return self.normalize(value)


class StringNormalizer(BaseNormalizer):
    pass


class NumberNormalizer(BaseNormalizer):
    nullable = False
    normalize_to = staticmethod(_to_number)


class BooleanNormalizer(BaseNormalizer):
    nullable = False
    normalize_to = bool


class CurrencyNormalizer(NumberNormalizer):
    """Numbers rendered as strings with two decimals (``"123.46"``)."""

    def normalize(self, value: Any) -> Any:
        number = super().normalize(value)
        if isinstance(number, list):
            return [f"{float(item):.2f}" for item in number]
        return f"{float(number):.2f}"


Normalizer = Union[BaseNormalizer, Callable[[Any], Any]]

_NORMALIZERS: dict[str, type[BaseNormalizer]] = {
    cls.__name__: cls
    for cls in (
        BaseNormalizer,
        StringNormalizer,
        NumberNormalizer,
        BooleanNormalizer,
        CurrencyNormalizer,
    )
}


def normalizer_factory(name: str, **options: Any) -> BaseNormalizer:
    """Build a normalizer by class name, e.g. ``normalizer_factory("NumberNormalizer")``.

    Raises:
        ImproperlyConfiguredError: If *name* is not a known normalizer.
    """
    try:
        normalizer_cls = _NORMALIZERS[name]
    except KeyError:
        raise ImproperlyConfiguredError(
            f"{name} is not a valid normalizer. Choose one of: {', '.join(sorted(_NORMALIZERS))}"
        ) from None
    return normalizer_cls(**options)
