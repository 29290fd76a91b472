"""S3 client over HTTP."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from contextlib import AbstractContextManager
from datetime import datetime
from functools import partial
from types import TracebackType
from typing import Any, Self

from opentelemetry import trace

from haos3.clients.pydantic import (
    S3GetObjectResponse,
    S3HeadObjectResponse,
    S3ListBucketResponse,
    S3PutObjectResponse,
)
from haos3.configs.s3 import S3ClientConfig
from haos3.listing.lister import BucketLister
from haos3.reliability.retry import RetryCoordinator
from haos3.requests.builder import utcnow
from haos3.requests.requester import S3Requester
from haos3.responses.reader import ChunkCallback, ResponseReader, S3ObjectHeader
from haos3.transport.abstract import AbstractTransport
from haos3.transport.streaming import HttpxTransport
from haos3.uploads.multipart import MultipartUploadSession
from haos3.uploads.planner import UploadPlanner
from haos3.uploads.single import ObjectUploader

logger = logging.getLogger(__name__)

tracer = trace.get_tracer(__name__)


class S3Client:
    """S3 client.

    Implements the `AbstractS3Client` protocol on top of a streaming transport.
    Every operation takes a snapshot of the config when it starts, so `configure`
    only affects operations started afterwards. Transient failures are retried
    with exponential backoff; 4xx answers fail at once.
    """

    def __init__(
        self,
        config: S3ClientConfig,
        transport: AbstractTransport | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the client.

        Args:
            config: The client configuration.
            transport: Transport to send requests with. Defaults to an `HttpxTransport`,
                which the client then closes on exit. A given transport is left open.
            clock: Returns the current UTC time for the `Date` header.
            sleep: Coroutine function used to wait between retries.

        """
        self._config = config
        self._owns_transport = transport is None
        self._transport: AbstractTransport = transport or HttpxTransport()
        self._clock = clock
        self._sleep = sleep
        self._background: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> Self:
        """Enter the client context."""
        return self

    async def __aexit__(
        self, exc_type: type[BaseException] | None, exc_value: BaseException | None, traceback: TracebackType | None
    ) -> None:
        """Exit the client context.

        Body transfers still in flight are cancelled.
        """
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel pending body transfers and close the transport if the client created it."""
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_transport:
            await self._transport.aclose()

    @property
    def config(self) -> S3ClientConfig:
        """The current configuration."""
        return self._config

    def configure(self, **changes: Any) -> Self:
        """Change the configuration of operations started from now on.

        Args:
            **changes: `S3ClientConfig` fields to replace.

        Returns:
            The client itself.

        Raises:
            pydantic.ValidationError: If the changed config is invalid.

        """
        self._config = self._config.reconfigured(**changes)
        return self

    def _snapshot(self) -> tuple[S3Requester, RetryCoordinator]:
        config = self._config
        requester = S3Requester(config, self._transport, clock=self._clock)
        retry = RetryCoordinator(max_retries=config.max_retries, initial_delay=config.retry_delay, sleep=self._sleep)
        return requester, retry

    @staticmethod
    def _span(operation: str, method: str, bucket: str, key: str | None = None) -> AbstractContextManager[trace.Span]:
        return tracer.start_as_current_span(
            f"s3.{operation}",
            attributes={"s3.bucket": bucket, "s3.key": key or "", "s3.method": method},
        )

    async def list_bucket(
        self,
        bucket: str | None = None,
        prefix: str | None = None,
        delimiter: str | None = None,
        timeout: float | None = None,
    ) -> S3ListBucketResponse:
        """List keys and common prefixes in a bucket.

        Truncated listings are followed page by page until the service reports the
        last page. Each page request is retried on its own.

        Args:
            bucket: Bucket name. Defaults to the configured bucket.
            prefix: Only list keys starting with this prefix, below the configured prefix.
            delimiter: Roll keys up to common prefixes at this delimiter.
            timeout: Deadline for each page request. Defaults to the configured timeout.

        Returns:
            The keys and common prefixes, with the configured prefix stripped.

        Raises:
            S3NoSuchBucketClientException: If the bucket does not exist.
            S3ClientException: If a page request fails for good.

        """
        requester, retry = self._snapshot()
        bucket = requester.builder.resolve_bucket(bucket)

        with self._span("list_bucket", "GET", bucket, prefix):
            return await BucketLister(requester, retry).list(
                bucket=bucket,
                prefix=prefix,
                delimiter=delimiter,
                timeout=timeout if timeout is not None else requester.config.timeout,
            )

    async def get(
        self,
        key: str,
        bucket: str | None = None,
        on_chunk: ChunkCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3GetObjectResponse:
        """Get the value of a key.

        Without `on_chunk` a failed transfer is retried from the start. With
        `on_chunk` only failures before the first chunk is delivered are retried,
        since the callback cannot take chunks back.

        Args:
            key: Object key.
            bucket: Bucket name. Defaults to the configured bucket.
            on_chunk: Called with the response and each body chunk instead of
                accumulating the body.
            timeout: Deadline for each attempt.
            stall_timeout: Stall window for the body transfer. Defaults to the
                configured stall timeout.

        Returns:
            The body, the response and the user metadata.

        Raises:
            S3NoSuchKeyClientException: If the key does not exist.
            S3ClientException: If the request fails for good.

        """
        requester, retry = self._snapshot()
        bucket = requester.builder.resolve_bucket(bucket)
        stall_timeout = stall_timeout if stall_timeout is not None else requester.config.stall_timeout
        timeout = timeout if timeout is not None else requester.config.timeout

        async def attempt() -> S3GetObjectResponse:
            header = await self._open(requester, "GET", bucket, key, on_chunk, timeout, stall_timeout)
            return await header.body

        with self._span("get", "GET", bucket, key):
            if on_chunk is None:
                return await retry.run(attempt, f"get {key}")

            header = await retry.run(
                partial(self._open, requester, "GET", bucket, key, on_chunk, timeout, stall_timeout),
                f"get {key}",
            )
            return await header.body

    async def head(
        self,
        key: str,
        bucket: str | None = None,
        timeout: float | None = None,
    ) -> S3HeadObjectResponse:
        """Get the response headers and user metadata of a key.

        Args:
            key: Object key.
            bucket: Bucket name. Defaults to the configured bucket.
            timeout: Deadline for each attempt. Defaults to the configured timeout.

        Returns:
            The response and the user metadata.

        Raises:
            S3NoSuchKeyClientException: If the key does not exist.
            S3ClientException: If the request fails for good.

        """
        requester, retry = self._snapshot()
        bucket = requester.builder.resolve_bucket(bucket)
        timeout = timeout if timeout is not None else requester.config.timeout

        async def attempt() -> S3GetObjectResponse:
            header = await self._open(requester, "HEAD", bucket, key, None, timeout, None)
            return await header.body

        with self._span("head", "HEAD", bucket, key):
            result = await retry.run(attempt, f"head {key}")
            return S3HeadObjectResponse(response=result.response, meta=result.meta)

    async def head_then_get(
        self,
        key: str,
        bucket: str | None = None,
        on_chunk: ChunkCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3ObjectHeader:
        """Get a key in two stages.

        Returns as soon as the status and headers are in, with the body still being
        transferred in the background. Failures before that point are retried and
        raised from this call. Failures afterwards fail the `body` future only.

        Args:
            key: Object key.
            bucket: Bucket name. Defaults to the configured bucket.
            on_chunk: Called with the response and each body chunk instead of
                accumulating the body.
            timeout: Deadline for each attempt, body transfer included.
            stall_timeout: Stall window for the body transfer. Defaults to the
                configured stall timeout.

        Returns:
            The header stage, holding the response, the user metadata and the
            future of the body stage.

        Raises:
            S3NoSuchKeyClientException: If the key does not exist.
            S3ClientException: If the request fails for good before the headers arrive.

        """
        requester, retry = self._snapshot()
        bucket = requester.builder.resolve_bucket(bucket)
        stall_timeout = stall_timeout if stall_timeout is not None else requester.config.stall_timeout
        timeout = timeout if timeout is not None else requester.config.timeout

        with self._span("head_then_get", "GET", bucket, key):
            return await retry.run(
                partial(self._open, requester, "GET", bucket, key, on_chunk, timeout, stall_timeout),
                f"get {key}",
            )

    async def _open(
        self,
        requester: S3Requester,
        method: str,
        bucket: str,
        key: str,
        on_chunk: ChunkCallback | None,
        timeout: float | None,
        stall_timeout: float | None,
    ) -> S3ObjectHeader:
        """Start one exchange in the background and wait for its header stage."""
        reader = ResponseReader(on_chunk)
        request = requester.builder.build(method, bucket=bucket, key=key)

        async def exchange() -> None:
            try:
                response = await requester.send(
                    request,
                    on_header=reader.on_header,
                    timeout=timeout,
                    stall_timeout=stall_timeout,
                )
            except asyncio.CancelledError as error:
                reader.fail(error)
                raise
            except Exception as error:  # noqa: BLE001
                reader.fail(error)
            else:
                reader.finish(response)

        task = asyncio.create_task(exchange())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        try:
            return await asyncio.shield(reader.header)
        except asyncio.CancelledError:
            task.cancel()
            raise

    async def put(
        self,
        key: str,
        value: Any = None,
        bucket: str | None = None,
        value_length: int | None = None,
        gen_parts: Callable[[], Any] | Iterable[Any] | None = None,
        meta: Mapping[str, str] | None = None,
        on_write: Callable[[int], None] | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3PutObjectResponse:
        """Set a new value for a key.

        Values longer than the configured part size, and values produced by
        `gen_parts` in more than one part, are uploaded as a multipart upload.
        Every request is retried on its own; a content generator is pulled again
        from position zero on retry, so it must return the same bytes every time.

        Args:
            key: Object key.
            value: Bytes or a string, a `generate(pos, length)` callable returning
                bytes or None when done, or an awaitable of either.
            bucket: Bucket name. Defaults to the configured bucket.
            value_length: Number of bytes to send. Required for generators. Short
                content is padded with zero bytes, long content is cut.
            gen_parts: Instead of `value`, a callable or iterable producing the
                parts: each a value as above or a `(generate, length)` pair, and
                None after the last part.
            meta: User metadata, sent as `X-Amz-Meta-*` headers.
            on_write: Called with the number of bytes sent so far.
            timeout: Deadline for each PUT attempt. Defaults to the configured
                timeout, or for the parts of a multipart upload to the configured
                part timeout. Initiate and complete calls always use the configured
                meta timeout.
            stall_timeout: Stall window for body transfers. Defaults to the
                configured stall timeout.

        Returns:
            The ETag of the stored object and the number of bytes sent.

        Raises:
            S3ConfigurationClientException: If the arguments cannot describe an upload,
                or the value needs too many parts.
            S3ClientException: If an upload request fails for good.

        """
        requester, retry = self._snapshot()
        bucket = requester.builder.resolve_bucket(bucket)
        stall_timeout = stall_timeout if stall_timeout is not None else requester.config.stall_timeout

        with self._span("put", "PUT", bucket, key):
            plan = await UploadPlanner(requester.config.part_size).plan(value, value_length, gen_parts)

            if plan.parts is not None:
                session = MultipartUploadSession(
                    requester,
                    retry,
                    bucket=bucket,
                    key=key,
                    meta=meta,
                    on_write=on_write,
                    part_timeout=timeout,
                    stall_timeout=stall_timeout,
                )
                result = await session.run(plan.parts)
            else:
                result = await retry.run(
                    partial(
                        ObjectUploader(requester).put_once,
                        bucket=bucket,
                        key=key,
                        content=plan.content,  # type: ignore[arg-type]
                        length=plan.length,
                        meta=meta,
                        on_write=on_write,
                        timeout=timeout if timeout is not None else requester.config.timeout,
                        stall_timeout=stall_timeout,
                    ),
                    f"put {key}",
                )

        logger.info("Stored %s/%s (%d bytes, ETag %s)", bucket, key, result.size, result.etag)
        return result

    async def delete(
        self,
        key: str,
        bucket: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Delete a key.

        Args:
            key: Object key.
            bucket: Bucket name. Defaults to the configured bucket.
            timeout: Deadline for each attempt. Defaults to the configured timeout.

        Raises:
            S3ClientException: If the request fails for good.

        """
        requester, retry = self._snapshot()
        bucket = requester.builder.resolve_bucket(bucket)
        timeout = timeout if timeout is not None else requester.config.timeout

        async def attempt() -> None:
            request = requester.builder.build("DELETE", bucket=bucket, key=key)
            await requester.send(request, timeout=timeout)

        with self._span("delete", "DELETE", bucket, key):
            await retry.run(attempt, f"delete {key}")

        logger.info("Deleted %s/%s", bucket, key)
