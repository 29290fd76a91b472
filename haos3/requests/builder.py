"""Signed S3 request construction."""

import re
from collections.abc import AsyncIterable, Callable, Mapping
from typing import TypeAlias
from datetime import UTC, datetime
from email.utils import format_datetime
from urllib.parse import quote

import httpx

from haos3.clients.abstract import S3ConfigurationClientException
from haos3.configs.s3 import S3ClientConfig
from haos3.requests.signer import S3Signer

MAX_DNS_LABEL_LENGTH = 63
_DNS_BUCKET_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]*$")

QueryParams: TypeAlias = Mapping[str, str | int | bool | None]


def is_dns_compatible(bucket: str) -> bool:
    """Whether `bucket` can be addressed as `bucket.host`."""
    return len(bucket) <= MAX_DNS_LABEL_LENGTH and _DNS_BUCKET_RE.match(bucket) is not None


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(UTC)


class S3RequestBuilder:
    """Build fully formed, signed requests from logical parameters.

    A request is built anew for every attempt: its `Date` header, and therefore
    its signature, must be fresh.
    """

    def __init__(
        self,
        config: S3ClientConfig,
        signer: S3Signer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the builder.

        Args:
            config: Config snapshot of the operation the requests belong to.
            signer: Signer to use. Defaults to one built from the config credentials.
            clock: Returns the current UTC time for the `Date` header.

        """
        self._config = config
        self._signer = signer or S3Signer(config.aws_access_key_id, config.aws_secret_access_key)
        self._clock = clock

    def resolve_bucket(self, bucket: str | None) -> str:
        """Return `bucket`, or the configured default bucket.

        Raises:
            S3ConfigurationClientException: If neither is set.

        """
        resolved = bucket or self._config.bucket
        if not resolved:
            msg = "No bucket given and no default bucket configured"
            raise S3ConfigurationClientException(msg)
        return resolved

    def object_path(self, key: str | None) -> str:
        """Join the configured key prefix and `key`."""
        return (self._config.prefix or "") + (key or "")

    def url(self, bucket: str, path: str, query_string: str) -> str:
        """Build the request URL, preferring virtual-hosted-style addressing."""
        scheme = "https" if self._config.use_ssl else "http"
        if is_dns_compatible(bucket):
            url = f"{scheme}://{bucket}.{self._config.host}/{path}"
        else:
            url = f"{scheme}://{self._config.host}/{bucket}/{path}"
        if query_string:
            url += "?" + query_string
        return url

    def build(
        self,
        method: str,
        *,
        bucket: str | None = None,
        key: str | None = None,
        abs_path: str | None = None,
        query: QueryParams | None = None,
        headers: Mapping[str, str] | None = None,
        meta: Mapping[str, str] | None = None,
        content: bytes | AsyncIterable[bytes] = b"",
        content_length: int | None = None,
    ) -> httpx.Request:
        """Build and sign a request.

        Args:
            method: HTTP method.
            bucket: Bucket name. Defaults to the configured bucket.
            key: Object key, prefixed with the configured key prefix.
            abs_path: Object path used verbatim, without the key prefix.
            query: Query parameters. Underscores in names become dashes, `None`
                values are left out and `True` values are sent as bare flags, as
                the `uploads` subresource is.
            headers: Extra headers, e.g. `Content-Type` or `Content-MD5`.
            meta: User metadata, sent as `X-Amz-Meta-*` headers in key order.
            content: Request body.
            content_length: Length of a streamed body.

        Returns:
            The signed request.

        """
        bucket = self.resolve_bucket(bucket)
        path = quote(abs_path if abs_path is not None else self.object_path(key), safe="/~")

        params = _normalize_query(query or {})
        query_string = "&".join(
            name if value is None else f"{name}={quote(value, safe='-_.~')}" for name, value in params.items()
        )

        request_headers: list[tuple[str, str]] = [("Date", format_datetime(self._clock(), usegmt=True))]
        request_headers.extend((headers or {}).items())
        meta = meta or {}
        request_headers.extend((f"X-Amz-Meta-{name}", meta[name]) for name in sorted(meta))

        if content_length is None and isinstance(content, bytes) and method in ("PUT", "POST"):
            content_length = len(content)
        if content_length is not None:
            request_headers.append(("Content-Length", str(content_length)))

        request = httpx.Request(
            method,
            self.url(bucket, path, query_string),
            headers=request_headers,
            content=content,
        )
        self._signer.sign(request, self._signer.canonical_resource(bucket, path, params))
        return request


def _normalize_query(query: QueryParams) -> dict[str, str | None]:
    """Sort parameters, dash their names and drop unset ones.

    A parameter whose value is `True` is a bare flag, such as `?uploads`.
    """
    params: dict[str, str | None] = {}
    for name in sorted(query):
        value = query[name]
        if value is None or value is False:
            continue
        params[name.replace("_", "-")] = None if value is True else str(value)
    return params
