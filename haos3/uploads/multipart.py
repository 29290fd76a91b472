"""Multipart uploads.

A multipart upload is initiated, fed one part at a time in increasing part
number order and finalized with a manifest of every part's ETag. A session that
fails midway is abandoned: it is neither resumed nor aborted.
"""

import base64
import hashlib
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import partial
from xml.etree import ElementTree as ET

from opentelemetry import metrics

from haos3.clients.abstract import S3ConfigurationClientException
from haos3.clients.pydantic import S3PartRecord, S3PutObjectResponse
from haos3.configs.s3 import MAX_PARTS
from haos3.content.sources import ContentSource
from haos3.reliability.retry import RetryCoordinator
from haos3.requests.requester import S3Requester
from haos3.responses.xml import build_document, require_text, text_element
from haos3.uploads.planner import PartSequence
from haos3.uploads.single import ObjectUploader

logger = logging.getLogger(__name__)

meter = metrics.get_meter(__name__)
uploaded_parts_counter = meter.create_counter(
    "haos3.parts.uploaded",
    unit="1",
    description="Multipart parts accepted by the service.",
)


@dataclass
class MultipartUpload:
    """State of an initiated multipart upload."""

    upload_id: str
    parts: list[S3PartRecord] = field(default_factory=list)
    bytes_written: int = 0

    @property
    def next_part_number(self) -> int:
        """Number of the part to upload next, starting at 1."""
        return len(self.parts) + 1

    def record(self, etag: str, size: int) -> S3PartRecord:
        """Record an uploaded part under the next part number."""
        part = S3PartRecord(part_number=self.next_part_number, etag=etag)
        self.parts.append(part)
        self.bytes_written += size
        return part

    def manifest(self) -> bytes:
        """Serialize the `CompleteMultipartUpload` document, parts in ascending order."""
        ordered = sorted(self.parts, key=lambda part: part.part_number)
        return build_document("CompleteMultipartUpload", map(_part_element, ordered))


def _part_element(part: S3PartRecord) -> ET.Element:
    element = ET.Element("Part")
    element.extend([text_element("PartNumber", str(part.part_number)), text_element("ETag", part.etag)])
    return element


class MultipartUploadSession:
    """Run one multipart upload from initiation to completion."""

    def __init__(
        self,
        requester: S3Requester,
        retry: RetryCoordinator,
        *,
        bucket: str | None,
        key: str,
        meta: Mapping[str, str] | None = None,
        on_write: Callable[[int], None] | None = None,
        part_timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            requester: Requester of the `put` operation.
            retry: Coordinator every step is run through.
            bucket: Bucket name, or None for the default bucket.
            key: Object key.
            meta: User metadata, sent with the initiation only.
            on_write: Called with the number of bytes sent across all parts so far.
            part_timeout: Deadline for each part attempt. Defaults to the configured
                part timeout.
            stall_timeout: Stall window for each part's body transfer.

        """
        self._requester = requester
        self._uploader = ObjectUploader(requester)
        self._retry = retry
        self._bucket = bucket
        self._key = key
        self._meta = meta
        self._on_write = on_write
        self._stall_timeout = stall_timeout
        self._part_timeout = part_timeout if part_timeout is not None else requester.config.effective_part_timeout
        self._meta_timeout = requester.config.effective_meta_timeout

    async def run(self, parts: PartSequence) -> S3PutObjectResponse:
        """Upload every part of `parts` and complete the upload.

        The next part is only pulled once the previous one, retries included, has
        been uploaded.

        Returns:
            The ETag of the completed object and the number of bytes sent.

        Raises:
            S3ConfigurationClientException: If `parts` yields more than `MAX_PARTS` parts.
            S3ClientException: If initiation, a part or completion fails for good.

        """
        upload_id = await self._retry.run(self._initiate, f"initiate multipart upload of {self._key}")
        upload = MultipartUpload(upload_id=upload_id)
        logger.debug("Initiated multipart upload %s of %s", upload_id, self._key)

        while (part := await parts.next()) is not None:
            number = upload.next_part_number
            if number > MAX_PARTS:
                msg = f"Multipart upload of {self._key} has more than {MAX_PARTS} parts"
                raise S3ConfigurationClientException(msg)

            response = await self._retry.run(
                partial(self._upload_part, upload, number, part),
                f"upload part {number} of {self._key}",
            )
            upload.record(response.etag, response.size)
            uploaded_parts_counter.add(1)
            logger.debug("Uploaded part %d of %s (%d bytes)", number, self._key, response.size)

        etag = await self._retry.run(partial(self._complete, upload), f"complete multipart upload of {self._key}")
        logger.debug("Completed multipart upload %s of %s in %d parts", upload_id, self._key, len(upload.parts))

        return S3PutObjectResponse(etag=etag, size=upload.bytes_written)

    async def _initiate(self) -> str:
        request = self._requester.builder.build(
            "POST",
            bucket=self._bucket,
            key=self._key,
            query={"uploads": True},
            meta=self._meta,
        )
        root = await self._requester.send_xml(request, timeout=self._meta_timeout)
        return require_text(root, "InitiateMultipartUploadResult", "UploadId")

    async def _upload_part(self, upload: MultipartUpload, number: int, part: ContentSource) -> S3PutObjectResponse:
        on_write = None
        if self._on_write is not None:
            on_write = partial(_offset_progress, self._on_write, upload.bytes_written)

        return await self._uploader.put_once(
            bucket=self._bucket,
            key=self._key,
            content=part,
            query={"partNumber": number, "uploadId": upload.upload_id},
            on_write=on_write,
            timeout=self._part_timeout,
            stall_timeout=self._stall_timeout,
        )

    async def _complete(self, upload: MultipartUpload) -> str:
        body = upload.manifest()
        request = self._requester.builder.build(
            "POST",
            bucket=self._bucket,
            key=self._key,
            query={"uploadId": upload.upload_id},
            headers={
                "Content-MD5": base64.b64encode(hashlib.md5(body).digest()).decode(),  # noqa: S324
                "Content-Type": "application/xml",
            },
            content=body,
        )
        root = await self._requester.send_xml(request, timeout=self._meta_timeout)
        return require_text(root, "CompleteMultipartUploadResult", "ETag")


def _offset_progress(on_write: Callable[[int], None], offset: int, position: int) -> None:
    on_write(offset + position)
