"""Single request uploads with ETag verification."""

import asyncio
import logging
import re
from collections.abc import AsyncIterable, Callable, Mapping

import httpx
from opentelemetry import metrics

from haos3.clients.abstract import S3IntegrityClientException, S3StallClientException
from haos3.clients.pydantic import S3PutObjectResponse
from haos3.content.sources import ContentSource, declared_length, resolve_content
from haos3.content.stream import ChecksummingStream
from haos3.requests.builder import QueryParams
from haos3.requests.requester import S3Requester
from haos3.transport.streaming import stall_guarded

logger = logging.getLogger(__name__)

meter = metrics.get_meter(__name__)
uploaded_bytes_counter = meter.create_counter(
    "haos3.bytes.uploaded",
    unit="By",
    description="Bytes sent in accepted upload requests.",
)

_ETAG_RE = re.compile(r'^"([0-9a-f]{32})"$', re.IGNORECASE)


def verify_etag(request: httpx.Request, response: httpx.Response, stream: ChecksummingStream) -> str:
    """Check the returned ETag against the digest of the bytes that were sent.

    Args:
        request: The upload request.
        response: Its successful response.
        stream: The drained body stream.

    Returns:
        The ETag as returned, quotes included.

    Raises:
        S3IntegrityClientException: If the ETag is missing, malformed or does not match.

    """
    etag = response.headers.get("ETag")
    if etag is None:
        msg = f"{request.method} {request.url.path} returned no ETag"
        raise S3IntegrityClientException(msg)

    match = _ETAG_RE.match(etag)
    if match is None:
        msg = f"{request.method} {request.url.path} returned a malformed ETag {etag!r}"
        raise S3IntegrityClientException(msg)

    if match.group(1).lower() != stream.hexdigest():
        msg = f"{request.method} {request.url.path} returned ETag {etag}, but {stream.hexdigest()} was sent"
        raise S3IntegrityClientException(msg)

    return etag


class ObjectUploader:
    """Upload one content source with a single PUT."""

    def __init__(self, requester: S3Requester) -> None:
        """Initialize the uploader.

        Args:
            requester: Requester of the operation the uploads belong to.

        """
        self._requester = requester

    async def put_once(
        self,
        *,
        bucket: str | None,
        key: str,
        content: ContentSource,
        length: int | None = None,
        query: QueryParams | None = None,
        meta: Mapping[str, str] | None = None,
        on_write: Callable[[int], None] | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3PutObjectResponse:
        """Make one upload attempt.

        A fresh checksumming stream is created for every attempt, so a retry drains
        the content again from the start.

        Args:
            bucket: Bucket name, or None for the default bucket.
            key: Object key.
            content: The content to send.
            length: Declared length. Defaults to the length of fixed content.
            query: Query parameters, e.g. the part number of a multipart part.
            meta: User metadata headers.
            on_write: Called with the number of bytes sent so far.
            timeout: Deadline for the attempt.
            stall_timeout: Stall window for the body transfer. It also bounds the wait
                for deferred content and for each chunk of a content generator.

        Returns:
            The verified ETag and the number of bytes sent.

        Raises:
            S3IntegrityClientException: If the returned ETag does not match the sent bytes.
            S3HTTPClientException: If the service rejected the upload.

        """
        try:
            async with asyncio.timeout(stall_timeout):
                source = await resolve_content(content)
        except TimeoutError as error:
            msg = f"PUT {key} content was not ready within {stall_timeout}s"
            raise S3StallClientException(msg) from error

        stream = ChecksummingStream(
            source,
            declared_length(source, length),
            self._requester.config.read_size,
            on_write=on_write,
        )

        body: AsyncIterable[bytes] = stream
        if stall_timeout is not None:
            body = stall_guarded(stream, stall_timeout, f"PUT {key}")

        request = self._requester.builder.build(
            "PUT",
            bucket=bucket,
            key=key,
            query=query,
            meta=meta,
            content=body,
            content_length=stream.length,
        )
        response = await self._requester.send(request, timeout=timeout, stall_timeout=stall_timeout)
        etag = verify_etag(request, response, stream)

        uploaded_bytes_counter.add(stream.position)
        logger.debug("Uploaded %d bytes to %s, ETag %s", stream.position, request.url.path, etag)

        return S3PutObjectResponse(etag=etag, size=stream.position)
