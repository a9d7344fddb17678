"""HTTP transport for restresource.

Provides the asynchronous transport that Resource classes are bound to,
wrapping :mod:`httpx` with default headers, retry with exponential backoff,
typed error mapping, and content negotiation into Resource instances.

Classes:
    :class:`AsyncClient` -- transport backed by :class:`httpx.AsyncClient`.
    :class:`JWTBearerClient` -- ``AsyncClient`` sending a bearer token.
    :class:`ApiResponse` -- ``status`` / ``headers`` / ``data`` of one response.
    :class:`ResourceResponse` -- parsed resources plus pagination accessors.

Example::

    from restresource import Resource
    from restresource.client import AsyncClient

    Resource.client = AsyncClient("https://api.example.com")
"""

from restresource.client.async_client import AsyncClient
from restresource.client.bearer import JWTBearerClient
from restresource.client.response import ApiResponse, ResourceResponse

__all__ = ["AsyncClient", "JWTBearerClient", "ApiResponse", "ResourceResponse"]
