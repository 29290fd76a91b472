"""Abstract HTTP transport."""

from collections.abc import Callable
from typing import Protocol, TypeAlias

import httpx

ChunkSink: TypeAlias = Callable[..., object]
"""Called with each body chunk, then once without arguments when the body ends."""

HeaderCallback: TypeAlias = Callable[[httpx.Response], ChunkSink | None]
"""Called once the status and headers are in. Returning None lets the transport buffer the body."""


class AbstractTransport(Protocol):
    """Dispatches requests. Must not interpret HTTP statuses, that is left to the caller."""

    async def do_request(
        self,
        request: httpx.Request,
        *,
        on_header: HeaderCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> httpx.Response:
        """Send `request` and return its response once the body has been consumed.

        Args:
            request: The request. A streamed body is drained by the transport.
            on_header: Receives the response as soon as its headers arrive and returns
                the sink for the body chunks.
            timeout: Deadline in seconds for the whole exchange.
            stall_timeout: Seconds without upload or download progress after which the
                exchange is abandoned.

        Raises:
            S3TimeoutClientException: If `timeout` expires.
            S3StallClientException: If the transfer stalls.
            S3TransportClientException: If the connection fails.

        """
        ...

    async def aclose(self) -> None:
        """Release the connections held by the transport."""
        ...
