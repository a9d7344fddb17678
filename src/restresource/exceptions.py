"""Exception hierarchy for restresource.

All exceptions inherit from :class:`RestResourceError`. Configuration and
modeling errors are raised synchronously at the call site; transport errors
raised by :class:`~restresource.client.AsyncClient` carry the HTTP ``status``
and decoded ``body`` of the failed response and propagate unchanged through
the fetch-coordination layer.

Subclass hierarchy::

    RestResourceError
    +-- ImproperlyConfiguredError
    +-- CacheError
    +-- AttributeError_
    +-- ValidationError
    +-- ConfigError
    +-- ConnectionError_
    +-- HTTPError
        +-- AuthError       (401, 403)
        +-- NotFoundError   (404)
        +-- ServerError     (5xx, other 4xx)
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class RestResourceError(Exception):
    """Base exception for all restresource errors."""


class ImproperlyConfiguredError(RestResourceError):
    """Raised when required class-level configuration is missing or invalid.

    Typical causes are a :class:`~restresource.Resource` subclass with no
    bound client, or a ``related`` declaration that does not point at a
    Resource class.
    """


class CacheError(RestResourceError):
    """Raised when caching a resource without an identity, or replacing a missing entry."""


class AttributeError_(RestResourceError):
    """Raised when reading a relation that has not been resolved yet.

    Named with a trailing underscore to avoid shadowing the built-in
    ``AttributeError``. :meth:`~restresource.Resource.resolve_attribute`
    catches exactly this type and resolves the relation instead.
    """


class ValidationError(RestResourceError):
    """Raised by validators, and raised in aggregate by :meth:`~restresource.Resource.save`.

    Args:
        field_or_errors: Either the name of the failing field, or a sequence
            of :class:`ValidationError` instances to aggregate.
        message: Human-readable description of the failure.
    """

    def __init__(
        self,
        field_or_errors: str | Sequence[ValidationError] = "",
        message: str = "",
    ) -> None:
        self.field: Optional[str] = None
        self.errors: list[ValidationError] = []

        if isinstance(field_or_errors, str):
            if field_or_errors:
                self.field = field_or_errors
                message = f"{field_or_errors}: {message or 'This field is not valid'}"
        else:
            self.errors = list(field_or_errors)
            message = "\n".join(str(e) for e in self.errors)

        self.message = message
        super().__init__(message)


class ConfigError(RestResourceError):
    """Raised for configuration problems (unreadable file, invalid JSON, bad values)."""


class ConnectionError_(RestResourceError):
    """Raised on network-level failures (timeout, DNS resolution, connection refused).

    Named with a trailing underscore to avoid shadowing the built-in
    ``ConnectionError``.
    """


class HTTPError(RestResourceError):
    """Raised when the API answers with an error status code.

    Args:
        message: Human-readable error description.
        status: The HTTP status code of the response.
        body: The decoded response body (JSON value, text, or ``None``).
    """

    def __init__(self, message: str, status: int, body: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class AuthError(HTTPError):
    """Raised when the API returns HTTP 401 or 403."""


class NotFoundError(HTTPError):
    """Raised when the API returns HTTP 404 (resource not found)."""


class ServerError(HTTPError):
    """Raised when the API returns an HTTP 5xx error, or an unmapped 4xx."""
