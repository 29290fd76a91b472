"""httpx based streaming transport."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterable, AsyncIterator, Iterator
from types import TracebackType
from typing import Any, Self

import httpx

from haos3.clients.abstract import (
    S3StallClientException,
    S3TimeoutClientException,
    S3TransportClientException,
)
from haos3.transport.abstract import HeaderCallback

logger = logging.getLogger(__name__)


class HttpxTransport:
    """Transport on top of `httpx.AsyncClient`.

    Responses are always opened in streaming mode, so the header callback runs
    before any body byte has been read.
    """

    def __init__(self, client: httpx.AsyncClient | None = None, **client_kwargs: Any) -> None:
        """Initialize the transport.

        Args:
            client: Client to send with. The transport only closes clients it created.
            **client_kwargs: Arguments for the `httpx.AsyncClient` created when
                `client` is not given. Its timeout defaults to None, so only the
                `timeout` and `stall_timeout` of each request bound it.

        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(**({"timeout": None} | client_kwargs))

    @property
    def client(self) -> httpx.AsyncClient:
        """The client requests are sent with."""
        return self._client

    async def __aenter__(self) -> Self:
        """Enter the transport context."""
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: TracebackType | None
    ) -> None:
        """Exit the transport context."""
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying client if the transport created it."""
        if self._owns_client:
            await self._client.aclose()

    async def do_request(
        self,
        request: httpx.Request,
        *,
        on_header: HeaderCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> httpx.Response:
        """Send `request`, see `haos3.transport.abstract.AbstractTransport.do_request`."""
        try:
            async with asyncio.timeout(timeout):
                return await self._exchange(request, on_header, stall_timeout)
        except TimeoutError as error:
            msg = f"{describe(request)} did not finish within {timeout}s"
            raise S3TimeoutClientException(msg) from error

    async def _exchange(
        self,
        request: httpx.Request,
        on_header: HeaderCallback | None,
        stall_timeout: float | None,
    ) -> httpx.Response:
        if stall_timeout is not None:
            # httpx read/write timeouts fire when a single socket operation makes no progress.
            request.extensions["timeout"] = self._client.timeout.as_dict() | {
                "read": stall_timeout,
                "write": stall_timeout,
            }
        else:
            request.extensions.setdefault("timeout", self._client.timeout.as_dict())

        logger.debug("Sending %s %s", request.method, request.url)

        with _translate_errors(request, stall_timeout):
            response = await self._client.send(request, stream=True)

        try:
            with _translate_errors(request, stall_timeout):
                sink = on_header(response) if on_header is not None else None
                if sink is None:
                    await response.aread()
                else:
                    async for chunk in stall_guarded(response.aiter_bytes(), stall_timeout, describe(request)):
                        sink(chunk)
                    sink()
        finally:
            await response.aclose()

        logger.debug("%s %s answered %d", request.method, request.url, response.status_code)
        return response


def describe(request: httpx.Request) -> str:
    """Short description of `request` for error messages."""
    return f"{request.method} {request.url.path}"


def _stall_message(description: str, stall_timeout: float | None) -> str:
    if stall_timeout is None:
        return f"{description} made no progress within the client's read/write timeout"
    return f"{description} made no progress for {stall_timeout}s"


@contextlib.contextmanager
def _translate_errors(request: httpx.Request, stall_timeout: float | None) -> Iterator[None]:
    try:
        yield
    except (httpx.ReadTimeout, httpx.WriteTimeout) as error:
        raise S3StallClientException(_stall_message(describe(request), stall_timeout)) from error
    except httpx.TransportError as error:
        msg = f"{describe(request)} failed: {error!r}"
        raise S3TransportClientException(msg) from error


async def stall_guarded(
    chunks: AsyncIterable[bytes], stall_timeout: float | None, description: str
) -> AsyncIterator[bytes]:
    """Yield from `chunks`, failing when the next chunk takes longer than `stall_timeout`.

    Guards both directions: response bodies read from the network and request
    bodies pulled from a content generator.

    Raises:
        S3StallClientException: If a chunk did not arrive within `stall_timeout` seconds.

    """
    iterator = aiter(chunks)
    while True:
        try:
            async with asyncio.timeout(stall_timeout):
                chunk = await anext(iterator)
        except StopAsyncIteration:
            return
        except TimeoutError as error:
            raise S3StallClientException(_stall_message(description, stall_timeout)) from error
        yield chunk
