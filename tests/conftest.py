"""Shared test fixtures for restresource.

Provides an in-memory fake REST API served through :class:`httpx.MockTransport`,
a client bound to it, a controllable clock, and a fresh set of Resource
classes per test so caches and in-flight registries never leak between
tests. These fixtures are automatically discovered by pytest and available
to all test modules without explicit imports.
"""

from __future__ import annotations

import asyncio
import copy
import json
from types import SimpleNamespace
from typing import Any, Optional
from urllib.parse import parse_qs

import httpx
import pytest

from restresource import AsyncClient, Resource
from restresource.models import RequestConfig

BASE_URL = "https://api.test"


# ---------------------------------------------------------------------------
# Fake API server
# ---------------------------------------------------------------------------


def _seed_data() -> dict[str, dict[str, dict[str, Any]]]:
    users = {
        str(i): {"id": i, "name": f"User {i}", "username": f"user{i}", "email": f"user{i}@example.com"}
        for i in range(1, 11)
    }
    posts = {
        str(i): {"id": i, "title": f"Post {i}", "body": "Lorem ipsum", "user": (i % 10) + 1}
        for i in range(1, 21)
    }
    todos = {
        str(i): {"id": i, "title": f"Todo {i}", "completed": i % 2 == 0, "user": (i % 10) + 1}
        for i in range(1, 91)
    }
    comments = {
        str(i): {"id": i, "post": (i % 20) + 1, "user": (i % 10) + 1, "body": f"Comment {i}"}
        for i in range(1, 11)
    }
    groups = {
        "1": {"id": 1, "name": "Admins", "owner": 1, "users": [1, 2, 3], "todos": []},
        "2": {"id": 2, "name": "Everyone", "owner": 2, "users": [], "todos": list(range(1, 91))},
        "3": {
            "id": 3,
            "name": "Embedded",
            "owner": 3,
            "users": [],
            "todos": [],
            "members": [copy.deepcopy(users["4"]), copy.deepcopy(users["5"])],
        },
    }
    return {"users": users, "posts": posts, "todos": todos, "comments": comments, "groups": groups}


class FakeApi:
    """Tiny REST server over in-memory collections.

    Routes:
        ``GET /<collection>`` -- paginated list with ``page`` / ``limit``
        query parameters and ``Pagination-*`` headers.
        ``GET|PUT|PATCH|DELETE /<collection>/<id>`` -- detail routes.
        ``POST /<collection>`` -- create; echoes the stored record.
        ``GET /users/me`` and ``GET /users/<id>/posts`` -- sub-routes.

    Paths added to ``fail_paths`` answer 500. While ``gate`` is set to an
    unset :class:`asyncio.Event`, requests block until it is set. Every
    request is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self.data = _seed_data()
        self.requests: list[httpx.Request] = []
        self.fail_paths: set[str] = set()
        self.gate: Optional[asyncio.Event] = None

    def count(self, method: str, path: str) -> int:
        """Number of recorded requests matching *method* and *path*."""
        return sum(
            1 for request in self.requests
            if request.method == method and request.url.path == path
        )

    def paths(self, method: str = "GET") -> list[str]:
        return [request.url.path for request in self.requests if request.method == method]

    def _respond(self, status: int, body: Any = None, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        if body is None:
            return httpx.Response(status, headers=headers or {})
        return httpx.Response(status, json=body, headers=headers or {})

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # Suspend like a real network call so concurrent callers interleave.
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()

        path = request.url.path
        if path in self.fail_paths:
            return self._respond(500, {"error": "boom"})

        parts = [part for part in path.split("/") if part]
        if not parts or parts[0] not in self.data:
            return self._respond(404, {"detail": "Not found"})
        collection = self.data[parts[0]]
        query = {key: values[-1] for key, values in parse_qs(request.url.query.decode()).items()}
        body = json.loads(request.content) if request.content else None

        if len(parts) == 1:
            if request.method == "POST":
                new_id = max((int(key) for key in collection), default=0) + 1
                record = {**(body or {}), "id": new_id}
                collection[str(new_id)] = record
                return self._respond(201, record)
            return self._list(list(collection.values()), query)

        if parts[0] == "users" and parts[1] == "me":
            return self._respond(200, collection["1"])

        if len(parts) == 3 and parts[0] == "users" and parts[2] == "posts":
            posts = [post for post in self.data["posts"].values() if str(post["user"]) == parts[1]]
            return self._list(posts, query)

        record = collection.get(parts[1])
        if record is None:
            return self._respond(404, {"detail": "Not found"})

        if request.method == "GET":
            return self._respond(200, record)
        if request.method == "PUT":
            collection[parts[1]] = {**(body or {}), "id": record["id"]}
            return self._respond(200, collection[parts[1]])
        if request.method == "PATCH":
            record.update(body or {})
            return self._respond(200, record)
        if request.method == "DELETE":
            del collection[parts[1]]
            return self._respond(204)
        return self._respond(405, {"detail": "Method not allowed"})

    def _list(self, items: list[dict[str, Any]], query: dict[str, str]) -> httpx.Response:
        filters = {key: value for key, value in query.items() if key not in ("page", "limit")}
        items = [
            item for item in items
            if all(str(item.get(key)) == value for key, value in filters.items())
        ]
        page = int(query.get("page", 1))
        limit = int(query.get("limit", 20))
        start = (page - 1) * limit
        headers = {
            "Pagination-Count": str(len(items)),
            "Pagination-Limit": str(limit),
            "Pagination-Page": str(page),
        }
        return self._respond(200, {"count": len(items), "results": items[start:start + limit]}, headers)


class FakeClock:
    """Manually advanced clock for deterministic cache expiry."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Transport fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api() -> FakeApi:
    """A fresh fake API with seeded users, posts, todos, comments, and groups."""
    return FakeApi()


@pytest.fixture
def client(api: FakeApi) -> AsyncClient:
    """An AsyncClient routed to the fake API, with retries disabled."""
    return AsyncClient(
        BASE_URL,
        request=RequestConfig(max_retries=0),
        transport=httpx.MockTransport(api.handle),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Resource classes
# ---------------------------------------------------------------------------


@pytest.fixture
def models(client: AsyncClient, clock: FakeClock) -> SimpleNamespace:
    """Resource classes bound to the fake API, created fresh for every test.

    ``Group.todos`` uses ``batch_size = 20``; ``Group.members`` holds
    embedded user records and is declared nested.
    """

    class BaseTestingResource(Resource):
        pass

    BaseTestingResource.client = client

    class User(BaseTestingResource):
        endpoint = "/users"

    class Todo(BaseTestingResource):
        endpoint = "/todos"
        related = {"user": User}

    class Post(BaseTestingResource):
        endpoint = "/posts"
        related = {"user": User}

    class Comment(BaseTestingResource):
        endpoint = "/comments"
        related = {"post": Post, "user": User}

    class Group(BaseTestingResource):
        endpoint = "/groups"
        batch_size = 20
        related = {
            "owner": User,
            "users": User,
            "todos": Todo,
            "members": {"to": User, "nested": True},
        }

    for cls in (BaseTestingResource, User, Todo, Post, Comment, Group):
        cls.resource_cache.clock = clock

    return SimpleNamespace(
        Base=BaseTestingResource,
        User=User,
        Todo=Todo,
        Post=Post,
        Comment=Comment,
        Group=Group,
    )
