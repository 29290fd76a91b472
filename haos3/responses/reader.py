"""Two-phase response reading.

A GET resolves in two stages: the header stage as soon as the status line and
headers arrive, and the body stage once the body has been drained. Callers can
act on an object's metadata while its body is still in flight.
"""

import asyncio
import re
from collections.abc import Callable
from typing import TypeAlias
from dataclasses import dataclass

import httpx

from haos3.clients.abstract import S3ProtocolClientException, http_exception_class
from haos3.clients.pydantic import S3GetObjectResponse
from haos3.responses.xml import find_text, parse_document

ChunkCallback: TypeAlias = Callable[[httpx.Response, bytes], object]

_META_HEADER_RE = re.compile(rb"^x-amz-meta-(.*)$", re.IGNORECASE)


def extract_meta(response: httpx.Response) -> dict[str, str]:
    """Collect the `X-Amz-Meta-*` headers, keyed by their suffix as received."""
    meta: dict[str, str] = {}
    for name, value in response.headers.raw:
        match = _META_HEADER_RE.match(name)
        if match is not None:
            meta[match.group(1).decode("latin-1")] = value.decode("latin-1")
    return meta


def raise_for_status(request: httpx.Request, response: httpx.Response) -> None:
    """Turn a non-2xx response into an `S3HTTPClientException`.

    The S3 error code and message are taken from the XML error document when the
    response carries one.
    """
    if response.is_success:
        return

    code = message = None
    if response.content:
        try:
            error = parse_document(response.content)
        except S3ProtocolClientException:
            pass
        else:
            code = find_text(error, "Code")
            message = find_text(error, "Message")

    description = f"{response.status_code} {response.reason_phrase} on {request.method} {request.url.path}"
    if code:
        description += f" ({code}: {message})" if message else f" ({code})"

    raise http_exception_class(response.status_code, code)(
        description,
        status_code=response.status_code,
        request=request,
        response=response,
        code=code,
    )


@dataclass(frozen=True)
class S3ObjectHeader:
    """The header stage of a GET.

    Attributes:
        response: The response, with headers but possibly without its body yet.
        meta: User metadata from the `X-Amz-Meta-*` headers.
        body: Resolves to the full `S3GetObjectResponse` once the body is drained.

    """

    response: httpx.Response
    meta: dict[str, str]
    body: asyncio.Future[S3GetObjectResponse]


class ResponseReader:
    """Consume one response in two stages.

    `on_header` is handed to the transport. Failures are routed with `fail`:
    before the header stage resolved they fail the header stage, afterwards they
    fail the body stage and leave the header stage untouched.
    """

    def __init__(self, on_chunk: ChunkCallback | None = None) -> None:
        """Initialize the reader.

        Args:
            on_chunk: Called with the response and each raw body chunk of a 200
                response. When given, the body stage holds an empty value.

        """
        loop = asyncio.get_running_loop()
        self.header: asyncio.Future[S3ObjectHeader] = loop.create_future()
        self._body: asyncio.Future[S3GetObjectResponse] = loop.create_future()
        self._on_chunk = on_chunk
        self._chunks: list[bytes] = []
        self._response: httpx.Response | None = None
        self._meta: dict[str, str] = {}
        self._streamed = False

    def on_header(self, response: httpx.Response) -> Callable[..., httpx.Response | None] | None:
        """Resolve the header stage and return the body sink.

        Only a 200 body is streamed through the sink. Error responses are left to
        the transport to buffer, so their XML can be read, and so is any other 2xx
        body, which then ends up in the body stage without reaching `on_chunk`.
        """
        if not response.is_success:
            return None

        self._resolve_header(response)
        if response.status_code != httpx.codes.OK:
            return None
        self._streamed = True
        return self._sink

    def _resolve_header(self, response: httpx.Response) -> None:
        self._response = response
        self._meta = extract_meta(response)
        self.header.set_result(S3ObjectHeader(response=response, meta=self._meta, body=self._body))

    def _sink(self, *chunk: bytes) -> httpx.Response | None:
        if not chunk:
            return self._response
        if self._on_chunk is not None:
            self._on_chunk(self._response, chunk[0])  # type: ignore[arg-type]
        else:
            self._chunks.append(chunk[0])
        return None

    def finish(self, response: httpx.Response) -> None:
        """Resolve the body stage, and the header stage if no body was streamed."""
        if not self.header.done():
            sink = self.on_header(response)
            if sink is not None and response.content:
                sink(response.content)

        if self._on_chunk is not None:
            body = b""
        elif self._streamed:
            body = b"".join(self._chunks)
        else:
            body = response.content
        self._body.set_result(S3GetObjectResponse(body=body, response=response, meta=self._meta))

    def fail(self, error: BaseException) -> None:
        """Fail whichever stage is still pending."""
        pending = self.header if not self.header.done() else self._body
        if pending.done():
            return
        if isinstance(error, asyncio.CancelledError):
            pending.cancel()
        else:
            pending.set_exception(error)
