"""Pydantic S3 client models."""

from __future__ import annotations

from datetime import datetime

import httpx
from pydantic import BaseModel, ConfigDict, Field


class S3Object(BaseModel):
    """S3 object as reported by a bucket listing."""

    key: str
    last_modified: datetime | None = None
    etag: str | None = None
    size: int | None = None
    storage_class: str | None = None


class S3ListingPage(BaseModel):
    """One page of a `ListBucketResult` document."""

    contents: list[S3Object] = Field(default_factory=list)
    common_prefixes: list[str] = Field(default_factory=list)
    is_truncated: bool = False
    next_marker: str | None = None

    @property
    def marker(self) -> str | None:
        """Marker to resume the listing after this page, if it is truncated."""
        if not self.is_truncated:
            return None
        if self.next_marker:
            return self.next_marker
        if self.contents:
            return self.contents[-1].key
        if self.common_prefixes:
            return self.common_prefixes[-1]
        return None


class S3ListBucketResponse(BaseModel):
    """S3 list bucket response, aggregated across every page."""

    keys: list[S3Object] = Field(default_factory=list)
    prefixes: list[str] = Field(default_factory=list)


class S3GetObjectResponse(BaseModel):
    """S3 get object response.

    `body` is empty when the value was streamed to an `on_chunk` callback.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    body: bytes
    response: httpx.Response
    meta: dict[str, str] = Field(default_factory=dict)


class S3HeadObjectResponse(BaseModel):
    """S3 head object response."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    response: httpx.Response
    meta: dict[str, str] = Field(default_factory=dict)


class S3PutObjectResponse(BaseModel):
    """S3 put object response.

    For single-part uploads `etag` is the quoted MD5 hex digest of the content.
    For multipart uploads it is whatever the completion call returned.
    """

    etag: str
    size: int


class S3PartRecord(BaseModel):
    """An uploaded part of a multipart upload."""

    part_number: int = Field(ge=1)
    etag: str
