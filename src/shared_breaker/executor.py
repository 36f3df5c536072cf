"""Request executors invoked by the circuit breaker.

The breaker treats requests and responses as opaque. Any object with an async
``invoke(request)`` method satisfies ``RequestExecutor``; ``HttpxRequestExecutor``
is the stock HTTP implementation.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

import httpx

RequestT = TypeVar("RequestT", contravariant=True)
ResponseT = TypeVar("ResponseT", covariant=True)


class RequestExecutor(Protocol[RequestT, ResponseT]):
    """Outbound call performed under breaker protection."""

    async def invoke(self, request: RequestT) -> ResponseT:
        """Perform the call, raising on transport or application failure."""


@dataclass(frozen=True)
class RequestDescriptor:
    """HTTP request passed through the breaker to ``HttpxRequestExecutor``."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] = field(default_factory=dict)
    json: Any = None
    content: bytes | str | None = None
    timeout: float | None = None


class HttpxRequestExecutor:
    """Execute ``RequestDescriptor`` values with a shared ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        raise_for_status: bool = True,
    ) -> None:
        """Create an executor bound to an HTTP client.

        Args:
            client: Shared async HTTP client. Its lifecycle stays with the caller.
            raise_for_status: Raise ``httpx.HTTPStatusError`` for 4xx/5xx responses
                so they count as breaker failures.
        """
        self._client = client
        self._raise_for_status = raise_for_status

    async def invoke(self, request: RequestDescriptor) -> httpx.Response:
        """Send ``request`` and return the response."""
        options: dict[str, Any] = {
            "headers": dict(request.headers),
            "params": dict(request.params),
        }
        if request.json is not None:
            options["json"] = request.json
        if request.content is not None:
            options["content"] = request.content
        if request.timeout is not None:
            options["timeout"] = request.timeout

        response = await self._client.request(
            request.method.upper(), request.url, **options
        )
        if self._raise_for_status:
            response.raise_for_status()
        return response
