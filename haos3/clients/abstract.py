"""Abstract S3 client and the S3 client exception hierarchy."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, Self, TypeAlias

import httpx

from haos3.clients.pydantic import (
    S3GetObjectResponse,
    S3HeadObjectResponse,
    S3ListBucketResponse,
    S3PutObjectResponse,
)

if TYPE_CHECKING:
    from haos3.responses.reader import ChunkCallback, S3ObjectHeader

HTTP_CLIENT_ERROR_MIN = 400
HTTP_CLIENT_ERROR_MAX = 499


class S3ClientException(Exception):
    """Base exception for S3 client errors.

    `retryable` tells the retry coordinator whether a fresh attempt may succeed.
    """

    retryable: bool = False


class S3HTTPClientException(S3ClientException):
    """Raised when the service answers with a non-2xx status.

    4xx statuses are permanent failures, everything else is transient.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        request: httpx.Request | None = None,
        response: httpx.Response | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human readable description.
            status_code: HTTP status code of the response.
            request: The request that failed.
            response: The response that carried the failure.
            code: The S3 error code from the response body, if any.

        """
        super().__init__(message)
        self.status_code = status_code
        self.request = request
        self.response = response
        self.code = code

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        """Whether the failure is transient."""
        return not HTTP_CLIENT_ERROR_MIN <= self.status_code <= HTTP_CLIENT_ERROR_MAX


class S3NoSuchBucketClientException(S3HTTPClientException):
    """Raised when the specified bucket does not exist."""


class S3NoSuchKeyClientException(S3HTTPClientException):
    """Raised when the specified object key does not exist."""


class S3AccessDeniedClientException(S3HTTPClientException):
    """Raised when access is denied to the specified resource."""


class S3InvalidBucketNameClientException(S3HTTPClientException):
    """Raised when the bucket name is invalid."""


class S3PreconditionFailedClientException(S3HTTPClientException):
    """Raised when a precondition check fails."""


class S3NoSuchUploadClientException(S3HTTPClientException):
    """Raised when a multipart upload id is unknown to the service."""


class S3ServiceClientException(S3HTTPClientException):
    """Raised when an S3 service error occurs."""


class S3IntegrityClientException(S3ClientException):
    """Raised when the returned ETag is missing, malformed or does not match the sent content."""

    retryable = True


class S3ProtocolClientException(S3ClientException):
    """Raised when a response does not have the shape the service contract promises."""


class S3ContentShapeClientException(S3ProtocolClientException):
    """Raised when a content value is of a shape the client cannot stream."""


class S3StallClientException(S3ClientException):
    """Raised when a body transfer makes no progress within the stall window."""

    retryable = True


class S3TimeoutClientException(S3ClientException):
    """Raised when an operation exceeds its deadline."""

    retryable = True


class S3TransportClientException(S3ClientException):
    """Raised when the connection fails below the HTTP layer."""

    retryable = True


class S3ConfigurationClientException(S3ClientException):
    """Raised when the call cannot be satisfied with the given arguments or configuration."""


_EXCEPTION_BY_CODE: dict[str, type[S3HTTPClientException]] = {
    "NoSuchBucket": S3NoSuchBucketClientException,
    "NoSuchKey": S3NoSuchKeyClientException,
    "AccessDenied": S3AccessDeniedClientException,
    "InvalidBucketName": S3InvalidBucketNameClientException,
    "PreconditionFailed": S3PreconditionFailedClientException,
    "NoSuchUpload": S3NoSuchUploadClientException,
}

_EXCEPTION_BY_STATUS: dict[int, type[S3HTTPClientException]] = {
    403: S3AccessDeniedClientException,
    404: S3NoSuchKeyClientException,
    412: S3PreconditionFailedClientException,
}


def http_exception_class(status_code: int, code: str | None) -> type[S3HTTPClientException]:
    """Pick the exception class for an S3 error.

    The S3 error code wins over the bare status, since HEAD responses carry no body
    and only the status is available for them.

    Args:
        status_code: HTTP status code.
        code: S3 error code from the XML error document, if any.

    Returns:
        The most specific exception class.

    """
    if code is not None and code in _EXCEPTION_BY_CODE:
        return _EXCEPTION_BY_CODE[code]
    if status_code in _EXCEPTION_BY_STATUS:
        return _EXCEPTION_BY_STATUS[status_code]
    if status_code > HTTP_CLIENT_ERROR_MAX:
        return S3ServiceClientException
    return S3HTTPClientException


PartValue: TypeAlias = Any
"""A value produced by a parts generator: content, a `(generator, length)` pair or `None`."""


class AbstractS3Client(Protocol):
    """Abstract S3 client.

    Only the object operations are modelled: list, get, head, put and delete.
    """

    async def __aenter__(self) -> Self:
        """Enter the client context."""
        ...

    async def __aexit__(self, *exc_info: object) -> None:
        """Exit the client context."""
        ...

    async def list_bucket(
        self,
        bucket: str | None = None,
        prefix: str | None = None,
        delimiter: str | None = None,
        timeout: float | None = None,
    ) -> S3ListBucketResponse:
        """List keys and common prefixes in a bucket, following truncation markers."""
        ...

    async def get(
        self,
        key: str,
        bucket: str | None = None,
        on_chunk: ChunkCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3GetObjectResponse:
        """Get the value of a key."""
        ...

    async def head(
        self,
        key: str,
        bucket: str | None = None,
        timeout: float | None = None,
    ) -> S3HeadObjectResponse:
        """Get the response headers and metadata of a key."""
        ...

    async def head_then_get(
        self,
        key: str,
        bucket: str | None = None,
        on_chunk: ChunkCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3ObjectHeader:
        """Get the header stage of a key, with the body stage still in flight."""
        ...

    async def put(
        self,
        key: str,
        value: Any = None,
        bucket: str | None = None,
        value_length: int | None = None,
        gen_parts: Callable[[], PartValue] | Iterable[PartValue] | None = None,
        meta: Mapping[str, str] | None = None,
        on_write: Callable[[int], None] | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> S3PutObjectResponse:
        """Set a new value for a key, using multipart upload when the value is large."""
        ...

    async def delete(
        self,
        key: str,
        bucket: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Delete a key."""
        ...
