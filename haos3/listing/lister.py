"""Paginated bucket listing."""

import logging
from functools import partial
from xml.etree import ElementTree as ET

from haos3.clients.abstract import S3ProtocolClientException
from haos3.clients.pydantic import S3ListBucketResponse, S3ListingPage, S3Object
from haos3.reliability.retry import RetryCoordinator
from haos3.requests.requester import S3Requester
from haos3.responses.xml import find_all, find_text, local_name

logger = logging.getLogger(__name__)


def parse_listing_page(root: ET.Element) -> S3ListingPage:
    """Parse a `ListBucketResult` document.

    Raises:
        S3ProtocolClientException: If the document is not a listing or an entry has no key.

    """
    if local_name(root.tag) != "ListBucketResult":
        msg = f"Expected a ListBucketResult document, got {local_name(root.tag)}"
        raise S3ProtocolClientException(msg)

    contents = []
    for entry in find_all(root, "Contents"):
        key = find_text(entry, "Key")
        if key is None:
            msg = "ListBucketResult has an entry without a Key"
            raise S3ProtocolClientException(msg)
        contents.append(
            S3Object(
                key=key,
                last_modified=find_text(entry, "LastModified") or None,
                etag=find_text(entry, "ETag"),
                size=find_text(entry, "Size") or None,
                storage_class=find_text(entry, "StorageClass"),
            )
        )

    return S3ListingPage(
        contents=contents,
        common_prefixes=[
            prefix
            for entry in find_all(root, "CommonPrefixes")
            if (prefix := find_text(entry, "Prefix")) is not None
        ],
        is_truncated=(find_text(root, "IsTruncated") or "").lower() == "true",
        next_marker=find_text(root, "NextMarker") or None,
    )


class BucketLister:
    """List a bucket page by page, following the truncation marker."""

    def __init__(self, requester: S3Requester, retry: RetryCoordinator) -> None:
        """Initialize the lister.

        Args:
            requester: Requester of the listing operation.
            retry: Coordinator each page request is run through.

        """
        self._requester = requester
        self._retry = retry

    async def list(
        self,
        *,
        bucket: str | None = None,
        prefix: str | None = None,
        delimiter: str | None = None,
        timeout: float | None = None,
    ) -> S3ListBucketResponse:
        """Collect every key and common prefix, in page order.

        The configured key prefix is prepended to `prefix` in the request and
        stripped from the returned keys and prefixes.

        Args:
            bucket: Bucket name, or None for the default bucket.
            prefix: Only list keys starting with this prefix.
            delimiter: Roll keys up to common prefixes at this delimiter.
            timeout: Deadline for each page request.

        Returns:
            The keys and common prefixes of all pages.

        """
        key_prefix = self._requester.config.prefix or ""
        result = S3ListBucketResponse()
        marker: str | None = None
        pages = 0

        while True:
            page = await self._retry.run(
                partial(self._fetch_page, bucket, key_prefix + (prefix or ""), delimiter, marker, timeout),
                "list bucket",
            )
            pages += 1

            result.keys.extend(
                entry.model_copy(update={"key": entry.key.removeprefix(key_prefix)}) for entry in page.contents
            )
            result.prefixes.extend(common.removeprefix(key_prefix) for common in page.common_prefixes)

            marker = page.marker
            if marker is None:
                if page.is_truncated:
                    logger.warning("Listing page %d is truncated but names no marker, stopping", pages)
                break

        logger.debug("Listed %d keys and %d prefixes in %d pages", len(result.keys), len(result.prefixes), pages)
        return result

    async def _fetch_page(
        self,
        bucket: str | None,
        prefix: str,
        delimiter: str | None,
        marker: str | None,
        timeout: float | None,
    ) -> S3ListingPage:
        request = self._requester.builder.build(
            "GET",
            bucket=bucket,
            abs_path="",
            query={
                "prefix": prefix,
                "delimiter": delimiter,
                "marker": marker,
                "max_keys": self._requester.config.list_max_keys,
            },
        )
        root = await self._requester.send_xml(request, timeout=timeout)
        return parse_listing_page(root)
