"""Pydantic models for transport configuration.

These are the only serialisable shapes in the project. A
:class:`ClientConfig` is loaded by :func:`~restresource.config.load_client_config`
and turned into a transport by
:meth:`~restresource.client.AsyncClient.from_config`.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestConfig(BaseModel):
    """Default HTTP request settings applied to every API call of a client."""

    timeout: float = Field(default=30, description="Request timeout in seconds")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    max_retries: int = Field(
        default=3, ge=0, description="Retry attempts on 5xx and network errors"
    )


class ClientConfig(BaseModel):
    """Connection settings for one REST API.

    Extra fields are preserved in ``model_extra`` so applications can keep
    their own settings next to the transport ones.

    Example::

        ClientConfig(
            base_url="https://api.example.com",
            token="eyJhbGciOi...",
            request=RequestConfig(timeout=5, max_retries=1),
        )
    """

    model_config = ConfigDict(extra="allow")

    base_url: str = Field(default="", description="Prefix for every request path")
    token: Optional[str] = Field(
        default=None, description="Bearer token sent in the Authorization header"
    )
    headers: dict[str, str] = Field(
        default_factory=dict, description="Headers added to every request"
    )
    request: RequestConfig = Field(default_factory=RequestConfig)
