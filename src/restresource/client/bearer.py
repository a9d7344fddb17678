"""Bearer token transport.

:class:`JWTBearerClient` is an :class:`~restresource.client.AsyncClient`
that sends ``Authorization: Bearer <token>`` with every request. The token
is used as given; obtaining or refreshing it is the application's job. When
the token is a JWT, its payload can be inspected to decide whether it has
expired.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Any, Optional

import httpx

from restresource.client.async_client import AsyncClient
from restresource.models import RequestConfig


class JWTBearerClient(AsyncClient):
    """Transport that authenticates with a static bearer token.

    Args:
        base_url: Prefix for every request path.
        token: The bearer token. An empty token sends ``Bearer `` and is
            reported invalid by :meth:`token_is_valid`.
        headers: Extra headers; an explicit ``Authorization`` here wins.
        request: Timeout, SSL verification, and retry settings.
        transport: Optional :class:`httpx.AsyncBaseTransport`.
    """

    def __init__(
        self,
        base_url: str = "",
        token: str = "",
        headers: Optional[dict[str, str]] = None,
        request: Optional[RequestConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        merged = {"Authorization": f"Bearer {token}"}
        merged.update(headers or {})
        super().__init__(base_url, headers=merged, request=request, transport=transport)
        self.token = token

    def get_token_payload(self) -> Optional[dict[str, Any]]:
        """Decode the JWT payload segment, or return ``None`` if it isn't a JWT."""
        pieces = self.token.split(".")
        if len(pieces) < 2:
            return None
        segment = pieces[1]
        segment += "=" * (-len(segment) % 4)
        try:
            payload = json.loads(base64.urlsafe_b64decode(segment.encode()))
        except (binascii.Error, ValueError):
            return None
        return payload if isinstance(payload, dict) else None

    def token_is_expired(self) -> bool:
        """True when the payload has no usable ``exp`` claim or it is in the past."""
        payload = self.get_token_payload()
        if payload is None:
            return True
        try:
            return float(payload["exp"]) < time.time()
        except (KeyError, TypeError, ValueError):
            return True

    def token_is_valid(self) -> bool:
        return bool(self.token) and not self.token_is_expired()
