"""Response shapes returned by the transport and the resource client.

:class:`ApiResponse` is the transport-level result (``status``, ``headers``,
``data``) of any HTTP verb. :class:`ResourceResponse` wraps an
:class:`ApiResponse` together with the :class:`~restresource.Resource`
instances parsed from it and exposes pagination accessors read from the
``Pagination-*`` response headers.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, Mapping, Optional, TypeVar

import httpx

if TYPE_CHECKING:
    from restresource.resource import Resource

R = TypeVar("R", bound="Resource")

PAGINATION_COUNT_HEADER = "Pagination-Count"
PAGINATION_LIMIT_HEADER = "Pagination-Limit"
PAGINATION_PAGE_HEADER = "Pagination-Page"


def extract_response_data(response: httpx.Response) -> Any:
    """Extract the body from an HTTP response.

    Attempts to parse the body as JSON first.  If that fails (e.g. the
    response is HTML or plain text), returns the raw text.  Returns
    ``None`` for responses with no content.
    """
    if not response.content:
        return None

    try:
        return response.json()
    except ValueError:
        return response.text


@dataclass
class ApiResponse:
    """Transport-level response: status code, headers, decoded body.

    ``headers`` is always an :class:`httpx.Headers` so lookups are
    case-insensitive regardless of how the mapping was supplied.
    """

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    data: Any = None
    method: str = "GET"
    url: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            self.headers = httpx.Headers(dict(self.headers or {}))

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> ApiResponse:
        """Build an :class:`ApiResponse` from an :class:`httpx.Response`."""
        return cls(
            status=response.status_code,
            headers=response.headers,
            data=extract_response_data(response),
            method=response.request.method,
            url=str(response.request.url),
        )

    @property
    def ok(self) -> bool:
        return self.status < 400


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass
class ResourceResponse(Generic[R]):
    """Resources parsed from one response, plus pagination helpers.

    Example::

        result = await Post.list(query={"page": 2})
        for post in result.resources:
            print(post.get("title"))
        print(result.current_page(), "/", result.pages())
    """

    response: ApiResponse
    resources: list[R] = field(default_factory=list)

    def count(self) -> Optional[int]:
        """Total number of items across all pages (``Pagination-Count``)."""
        return _int_header(self.response.headers, PAGINATION_COUNT_HEADER)

    def per_page(self) -> Optional[int]:
        """Page size (``Pagination-Limit``)."""
        return _int_header(self.response.headers, PAGINATION_LIMIT_HEADER)

    def current_page(self) -> Optional[int]:
        """Current page number (``Pagination-Page``)."""
        return _int_header(self.response.headers, PAGINATION_PAGE_HEADER)

    def pages(self) -> Optional[int]:
        """Number of pages, ``ceil(count / per_page)``."""
        count = self.count()
        limit = self.per_page()
        if count is None or not limit:
            return None
        return math.ceil(count / limit)
