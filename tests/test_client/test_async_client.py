"""Tests for the asynchronous transport."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from restresource.client import AsyncClient, JWTBearerClient
from restresource.exceptions import AuthError, ConnectionError_, NotFoundError, ServerError
from restresource.models import ClientConfig, RequestConfig


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_client(handler, max_retries: int = 0, **kwargs: Any) -> AsyncClient:
    return AsyncClient(
        "https://api.example.com",
        request=RequestConfig(max_retries=max_retries),
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.fixture
def no_sleep(monkeypatch: pytest.MonkeyPatch) -> list[float]:
    """Record retry delays instead of sleeping."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("restresource.client.async_client.asyncio.sleep", _sleep)
    return delays


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes(self) -> None:
        client = _make_client(lambda request: httpx.Response(200))
        assert client._client is None
        async with client:
            assert client._client is not None
        assert client._client is None

    def test_from_config_plain(self) -> None:
        client = AsyncClient.from_config(
            ClientConfig(base_url="https://api.example.com", headers={"X-App": "1"})
        )
        assert type(client) is AsyncClient
        assert client.base_url == "https://api.example.com"
        assert client.headers == {"X-App": "1"}

    def test_from_config_with_token(self) -> None:
        client = AsyncClient.from_config(ClientConfig(token="abc"))
        assert isinstance(client, JWTBearerClient)
        assert client.headers["Authorization"] == "Bearer abc"


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_merges_headers_and_params(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        client = _make_client(handler, headers={"X-App": "tests"})
        response = await client.get("/things", params={"page": 2}, headers={"X-Extra": "1"})

        assert response.status == 200
        assert response.data == {"ok": True}
        request = seen[0]
        assert request.url.path == "/things"
        assert request.url.params["page"] == "2"
        assert request.headers["Accept"] == "application/json"
        assert request.headers["X-App"] == "tests"
        assert request.headers["X-Extra"] == "1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["post", "put", "patch"])
    async def test_body_methods_send_json(self, method: str) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=json.loads(request.content))

        client = _make_client(handler)
        response = await getattr(client, method)("/things/1", json_body={"name": "x"})

        assert seen[0].method == method.upper()
        assert response.data == {"name": "x"}

    @pytest.mark.asyncio
    async def test_delete(self) -> None:
        client = _make_client(lambda request: httpx.Response(204))
        response = await client.delete("/things/1")
        assert response.status == 204
        assert response.data is None


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors(self, status: int) -> None:
        client = _make_client(lambda request: httpx.Response(status, json={"detail": "nope"}))
        with pytest.raises(AuthError) as exc_info:
            await client.get("/secret")
        assert exc_info.value.status == status
        assert exc_info.value.body == {"detail": "nope"}
        assert "nope" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        client = _make_client(lambda request: httpx.Response(404, json={"detail": "missing"}))
        with pytest.raises(NotFoundError) as exc_info:
            await client.get("/things/404")
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_other_client_error_is_server_error(self) -> None:
        client = _make_client(lambda request: httpx.Response(422, text="bad input"))
        with pytest.raises(ServerError) as exc_info:
            await client.post("/things", json_body={})
        assert exc_info.value.status == 422
        assert exc_info.value.body == "bad input"


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_server_errors_with_backoff(self, no_sleep: list[float]) -> None:
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"ok": True})

        client = _make_client(handler, max_retries=3)
        response = await client.get("/flaky")

        assert response.data == {"ok": True}
        assert calls["n"] == 3
        assert no_sleep == [1, 2]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, no_sleep: list[float]) -> None:
        client = _make_client(lambda request: httpx.Response(500), max_retries=2)
        with pytest.raises(ServerError) as exc_info:
            await client.get("/down")
        assert exc_info.value.status == 500
        assert no_sleep == [1, 2]

    @pytest.mark.asyncio
    async def test_connection_errors_raise_after_retries(self, no_sleep: list[float]) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _make_client(handler, max_retries=1)
        with pytest.raises(ConnectionError_, match="after 2 attempts"):
            await client.get("/unreachable")
        assert no_sleep == [1]


# ---------------------------------------------------------------------------
# Content negotiation
# ---------------------------------------------------------------------------


class TestResourceRoutes:
    @pytest.mark.asyncio
    async def test_list_parses_results(self, models, api) -> None:
        result = await models.User.client.list(models.User, {"limit": 5})

        assert [user.id for user in result.resources] == [1, 2, 3, 4, 5]
        assert all(isinstance(user, models.User) for user in result.resources)
        assert result.count() == 10
        assert result.pages() == 2
        assert api.requests[0].url.params["limit"] == "5"

    @pytest.mark.asyncio
    async def test_detail_parses_one(self, models, api) -> None:
        result = await models.User.client.detail(models.User, 3)
        assert len(result.resources) == 1
        assert result.resources[0].get("name") == "User 3"
        assert api.paths() == ["/users/3"]

    def test_negotiate_plain_list_body(self, models) -> None:
        from restresource.client.response import ApiResponse

        response = ApiResponse(status=200, data=[{"id": 1}, {"id": 2}])
        result = models.User.client.negotiate_content(models.User, response)
        assert [user.id for user in result.resources] == [1, 2]

    def test_negotiate_empty_body_gives_new_instance(self, models) -> None:
        from restresource.client.response import ApiResponse

        result = models.User.client.negotiate_content(models.User, ApiResponse(status=200))
        assert len(result.resources) == 1
        assert result.resources[0].is_new()

    def test_parsed_instances_are_cached(self, models) -> None:
        from restresource.client.response import ApiResponse

        response = ApiResponse(status=200, data={"results": [{"id": 8}]})
        result = models.User.client.negotiate_content(models.User, response)
        assert models.User.get_cached(8).resource is result.resources[0]
