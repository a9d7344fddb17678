"""Asynchronous HTTP transport and resource client.

This module provides :class:`AsyncClient`, the transport every
:class:`~restresource.Resource` class talks through.  It wraps
:class:`httpx.AsyncClient` and layers on:

- **Default headers** -- merged into every outgoing request.
- **Retry with backoff** -- retries on 5xx and network errors with
  exponential delay (1 s, 2 s, 4 s, ...) using :func:`asyncio.sleep`.
- **Error mapping** -- 4xx/5xx responses raise typed
  :class:`~restresource.exceptions.HTTPError` subclasses carrying the
  status and decoded body.
- **Content negotiation** -- :meth:`AsyncClient.list` and
  :meth:`AsyncClient.detail` turn response bodies into Resource instances
  wrapped in a :class:`~restresource.client.response.ResourceResponse`.

The underlying :class:`httpx.AsyncClient` is created lazily on the first
request so a client can be bound to Resource classes at import time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx

from restresource.client.response import ApiResponse, ResourceResponse
from restresource.exceptions import AuthError, ConnectionError_, NotFoundError, ServerError
from restresource.models import ClientConfig, RequestConfig

if TYPE_CHECKING:
    from restresource.resource import Resource

logger = logging.getLogger(__name__)


class AsyncClient:
    """Asynchronous HTTP client for REST API calls.

    Args:
        base_url: Prefix for every request path.
        headers: Headers added to every request.
        request: Timeout, SSL verification, and retry settings.
        transport: Optional :class:`httpx.AsyncBaseTransport`, mainly for
            tests (``httpx.MockTransport``).

    Example::

        client = AsyncClient("https://api.example.com")
        Resource.client = client
        ...
        await client.aclose()
    """

    def __init__(
        self,
        base_url: str = "",
        headers: Optional[dict[str, str]] = None,
        request: Optional[RequestConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.headers: dict[str, str] = dict(headers or {})
        self._request_config = request or RequestConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> AsyncClient:
        """Build a client from a :class:`~restresource.models.ClientConfig`.

        A :class:`~restresource.client.bearer.JWTBearerClient` is returned
        when the config carries a token.
        """
        if config.token:
            from restresource.client.bearer import JWTBearerClient

            return JWTBearerClient(
                config.base_url,
                token=config.token,
                headers=config.headers,
                request=config.request,
                transport=transport,
            )
        return cls(
            config.base_url,
            headers=config.headers,
            request=config.request,
            transport=transport,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            config = self._request_config
            kwargs: dict[str, Any] = {
                "base_url": self.base_url,
                "timeout": config.timeout,
                "verify": config.verify_ssl,
                "follow_redirects": True,
            }
            if self._transport is not None:
                kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying :class:`httpx.AsyncClient`, if one was opened."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> AsyncClient:
        self._get_client()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Public request methods
    # ------------------------------------------------------------------ #

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        json_body: Optional[Any] = None,
    ) -> ApiResponse:
        """Make an HTTP request with default headers, retry, and error mapping.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE).
            path: URL path appended to ``base_url``; may carry a querystring.
            params: Extra query parameters.
            headers: Extra request headers.
            json_body: JSON-serialisable body.

        Returns:
            The :class:`~restresource.client.response.ApiResponse`.

        Raises:
            AuthError: On 401 / 403.
            NotFoundError: On 404.
            ServerError: On 5xx after all retries, or any other 4xx.
            ConnectionError_: On network / timeout errors after all retries.
        """
        merged_headers: dict[str, str] = {"Accept": "application/json"}
        merged_headers.update(self.headers)
        merged_headers.update(headers or {})

        response = await self._execute_with_retry(
            method.upper(), path, merged_headers, dict(params or {}), json_body,
        )
        api_response = ApiResponse.from_httpx(response)
        self._map_response_error(api_response)
        return api_response

    async def get(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a GET request."""
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, json_body: Any = None, **kwargs: Any) -> ApiResponse:
        """Send a POST request with a JSON body."""
        return await self.request("POST", path, json_body=json_body, **kwargs)

    async def put(self, path: str, json_body: Any = None, **kwargs: Any) -> ApiResponse:
        """Send a PUT request with a JSON body."""
        return await self.request("PUT", path, json_body=json_body, **kwargs)

    async def patch(self, path: str, json_body: Any = None, **kwargs: Any) -> ApiResponse:
        """Send a PATCH request with a JSON body."""
        return await self.request("PATCH", path, json_body=json_body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ApiResponse:
        """Send a DELETE request."""
        return await self.request("DELETE", path, **kwargs)

    # ------------------------------------------------------------------ #
    # Resource routes
    # ------------------------------------------------------------------ #

    async def list(
        self,
        resource_cls: type[Resource],
        query: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> ResourceResponse:
        """GET a Resource class's list route and parse every item."""
        response = await self.get(resource_cls.list_route_path(query), **kwargs)
        return self.negotiate_content(resource_cls, response)

    async def detail(
        self,
        resource_cls: type[Resource],
        id: Any,
        query: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> ResourceResponse:
        """GET a Resource class's detail route for *id*."""
        response = await self.get(resource_cls.detail_route_path(id, query), **kwargs)
        return self.negotiate_content(resource_cls, response)

    def negotiate_content(
        self, resource_cls: type[Resource], response: ApiResponse
    ) -> ResourceResponse:
        """Turn a response body into Resource instances.

        A JSON list, or an object holding a ``results`` list, yields one
        instance per item; any other body yields a single instance. Every
        instance with an identity is cached on *resource_cls*.
        """
        body = response.data
        if isinstance(body, list):
            items = body
        elif isinstance(body, dict) and isinstance(body.get("results"), list):
            items = body["results"]
        else:
            items = [body or {}]

        resources = [resource_cls.from_server(attributes) for attributes in items]
        return ResourceResponse(response=response, resources=resources)

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _execute_with_retry(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        params: dict[str, Any],
        json_body: Any,
    ) -> httpx.Response:
        """Execute the HTTP request with exponential-backoff retry.

        Retries on 5xx status codes and connection / timeout errors up to
        ``max_retries`` times. The delay doubles each attempt: 1 s, 2 s, 4 s, ...
        """
        client = self._get_client()
        max_retries = self._request_config.max_retries

        for attempt in range(max_retries + 1):
            try:
                kwargs: dict[str, Any] = {
                    "method": method,
                    "url": path,
                    "headers": headers,
                }
                if params:
                    kwargs["params"] = params
                if json_body is not None:
                    kwargs["json"] = json_body

                response = await client.request(**kwargs)

                if response.status_code >= 500 and attempt < max_retries:
                    delay = 2 ** attempt
                    logger.debug(
                        "Server error %s on %s %s, retrying in %ss (attempt %s/%s)",
                        response.status_code, method, path, delay, attempt + 1, max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue

                return response

            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < max_retries:
                    delay = 2 ** attempt
                    logger.debug(
                        "Connection error on %s %s: %s, retrying in %ss (attempt %s/%s)",
                        method, path, exc, delay, attempt + 1, max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue

                raise ConnectionError_(
                    f"Connection failed after {max_retries + 1} attempts: {exc}"
                ) from exc

        raise ServerError("Request failed after all retries", status=0)  # pragma: no cover

    def _map_response_error(self, response: ApiResponse) -> None:
        """Raise a typed exception for error HTTP status codes."""
        status = response.status
        if status < 400:
            return

        detail = response.data
        if isinstance(detail, dict):
            msg = detail.get("message") or detail.get("error") or detail.get("detail") or ""
        elif detail is None:
            msg = ""
        else:
            msg = str(detail)[:200]

        prefix = f"HTTP {status}"
        full_msg = f"{prefix}: {msg}" if msg else prefix

        if status in (401, 403):
            raise AuthError(full_msg, status=status, body=detail)
        if status == 404:
            raise NotFoundError(full_msg, status=status, body=detail)
        raise ServerError(full_msg, status=status, body=detail)
