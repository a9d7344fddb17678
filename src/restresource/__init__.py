"""restresource -- model a REST API as cached, related Python resources.

Subclass :class:`Resource` per API endpoint, bind an :class:`AsyncClient`,
and fetch instances with :meth:`Resource.detail` and :meth:`Resource.list`.
Fetched instances are cached per class, concurrent fetches of the same
instance share one request, and relation attributes are resolved into
instances in concurrent batches by a :class:`RelatedManager`.

Typical usage::

    Resource.client = AsyncClient("https://api.example.com")

    class User(Resource):
        endpoint = "/users"

    class Post(Resource):
        endpoint = "/posts"
        related = {"user": User}

    post = await Post.detail(1, resolve_related=True)
    post.get("user.name")

Modules:
    resource: The :class:`Resource` base class and :class:`RouteWrapper`.
    related: Relation declarations and :class:`RelatedManager`.
    client: HTTP transports and response wrappers.
    cache: Per-class time-bounded instance cache.
    inflight: Single-flight registry for detail fetches.
    normalization: Attribute normalizers.
    config: Client configuration loading.
    log: Logging setup.
    exceptions: Exception hierarchy.
"""

from restresource.client import AsyncClient, JWTBearerClient
from restresource.related import Relation, RelatedManager
from restresource.resource import Resource, RouteWrapper

__version__ = "0.1.0"

__all__ = [
    "AsyncClient",
    "JWTBearerClient",
    "Relation",
    "RelatedManager",
    "Resource",
    "RouteWrapper",
]
