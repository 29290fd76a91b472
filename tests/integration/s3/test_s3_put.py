"""Test uploads through the S3 client."""

import asyncio
import hashlib
from collections.abc import Callable
from xml.etree import ElementTree as ET

import pytest

from haos3.clients.abstract import (
    S3ConfigurationClientException,
    S3ContentShapeClientException,
    S3IntegrityClientException,
)
from haos3.clients.http import S3Client
from tests.integration.s3.fake_s3 import BUCKET, FakeS3Service

PART_SIZE = 16
LONG_VALUE = b"Content too long for one chunk"
FIRST_PART = b"Content too long"
SECOND_PART = b" for one chunk"
NEW_VALUE = b"a new value"
MAX_RETRIES = 3


def generate_from(data: bytes) -> Callable[[int, int], bytes | None]:
    """A content generator serving `data` by position."""

    def generate(pos: int, length: int) -> bytes | None:
        return data[pos : pos + length] or None

    return generate


@pytest.mark.asyncio
async def test_put_single_value(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that a small value is stored with one PUT."""
    response = await s3_client.put("key", NEW_VALUE)

    assert response.etag == f'"{hashlib.md5(NEW_VALUE).hexdigest()}"'  # noqa: S324
    assert response.size == len(NEW_VALUE)
    assert fake_s3.objects[BUCKET]["key"].body == NEW_VALUE
    assert [request.method for request in fake_s3.requests] == ["PUT"]
    assert fake_s3.requests[0].headers["Content-Length"] == str(len(NEW_VALUE))


@pytest.mark.asyncio
async def test_put_string_value(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that strings are sent UTF-8 encoded."""
    await s3_client.put("key", "grüße")

    assert fake_s3.objects[BUCKET]["key"].body == "grüße".encode()


@pytest.mark.asyncio
async def test_put_with_meta(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that user metadata is sent as sorted X-Amz-Meta headers."""
    await s3_client.put("key", NEW_VALUE, meta={"Zeta": "last", "Alpha": "first"})

    meta_headers = [name for name, _ in fake_s3.requests[0].headers.raw if name.lower().startswith(b"x-amz-meta-")]
    assert meta_headers == [b"X-Amz-Meta-Alpha", b"X-Amz-Meta-Zeta"]
    assert fake_s3.objects[BUCKET]["key"].meta == {"Alpha": "first", "Zeta": "last"}


@pytest.mark.asyncio
async def test_put_pads_short_generator(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that a generator producing too little is padded with zero bytes."""
    response = await s3_client.put("key", generate_from(b"Too short"), value_length=30)

    assert fake_s3.objects[BUCKET]["key"].body == b"Too short" + b"\0" * 21
    assert response.size == 30  # noqa: PLR2004


@pytest.mark.asyncio
async def test_put_truncates_long_generator(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that a generator producing too much is cut at the declared length."""
    value = b"This string is longer than the declared length"

    def generate(pos: int, length: int) -> bytes:
        return value

    await s3_client.put("key", generate, value_length=20)

    assert fake_s3.objects[BUCKET]["key"].body == value[:20]


@pytest.mark.asyncio
async def test_put_deferred_value(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that an awaitable value is uploaded once it resolves."""
    future: asyncio.Future[bytes] = asyncio.get_running_loop().create_future()
    asyncio.get_running_loop().call_soon(future.set_result, NEW_VALUE)

    await s3_client.put("key", future)

    assert fake_s3.objects[BUCKET]["key"].body == NEW_VALUE


@pytest.mark.asyncio
async def test_put_reports_progress(s3_client: S3Client) -> None:
    """Test that on_write sees the growing number of bytes sent."""
    positions: list[int] = []
    s3_client.configure(read_size=4)

    await s3_client.put("key", generate_from(NEW_VALUE), value_length=len(NEW_VALUE), on_write=positions.append)

    assert positions == [4, 8, 11]


@pytest.mark.asyncio
async def test_put_splits_long_value(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that a value longer than the part size is uploaded in parts."""
    s3_client.configure(part_size=PART_SIZE)

    response = await s3_client.put("key", LONG_VALUE, meta={"Color": "blue"})

    initiate, first, second, complete = fake_s3.requests
    assert (initiate.method, initiate.url.query) == ("POST", b"uploads")
    assert first.url.params["partNumber"] == "1"
    assert first.content == FIRST_PART
    assert second.url.params["partNumber"] == "2"
    assert second.content == SECOND_PART
    assert complete.method == "POST"
    assert complete.headers["Content-Type"] == "application/xml"

    assert initiate.headers["X-Amz-Meta-Color"] == "blue"
    assert "X-Amz-Meta-Color" not in first.headers

    manifest = ET.fromstring(complete.content)  # noqa: S314
    assert [part.findtext("PartNumber") for part in manifest.findall("Part")] == ["1", "2"]

    stored = fake_s3.objects[BUCKET]["key"]
    assert stored.body == LONG_VALUE
    assert stored.meta == {"Color": "blue"}
    assert response.etag == stored.etag
    assert response.size == len(LONG_VALUE)


@pytest.mark.asyncio
async def test_put_splits_long_generator(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that generator windows are pulled from their own offset."""
    s3_client.configure(part_size=PART_SIZE)
    calls: list[tuple[int, int]] = []

    def generate(pos: int, length: int) -> bytes:
        calls.append((pos, length))
        return LONG_VALUE[pos : pos + length]

    await s3_client.put("key", generate, value_length=len(LONG_VALUE))

    assert fake_s3.objects[BUCKET]["key"].body == LONG_VALUE
    assert calls == [(0, 16), (16, 14)]


@pytest.mark.asyncio
async def test_put_gen_parts(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test uploading parts produced by a parts generator."""
    parts = iter([b"first part, ", (generate_from(b"second part"), 11), "third part"])

    response = await s3_client.put("key", gen_parts=lambda: next(parts, None))

    assert fake_s3.objects[BUCKET]["key"].body == b"first part, second partthird part"
    assert [request.url.params.get("partNumber") for request in fake_s3.requests_for("PUT")] == ["1", "2", "3"]
    assert response.size == len(b"first part, second partthird part")


@pytest.mark.asyncio
async def test_put_gen_parts_single_part(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that a parts generator yielding one part is stored with a single PUT."""
    await s3_client.put("key", gen_parts=[NEW_VALUE])

    assert [request.method for request in fake_s3.requests] == ["PUT"]
    assert fake_s3.objects[BUCKET]["key"].body == NEW_VALUE


@pytest.mark.asyncio
async def test_put_gen_parts_empty(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that an empty parts generator stores an empty object."""
    await s3_client.put("key", gen_parts=[])

    assert fake_s3.objects[BUCKET]["key"].body == b""


@pytest.mark.asyncio
async def test_put_retries_part(s3_client: S3Client, fake_s3: FakeS3Service, sleeps: list[float]) -> None:
    """Test that a failed part is retried on its own."""
    s3_client.configure(part_size=PART_SIZE)
    fake_s3.override_next_etag('"00000000000000000000000000000000"')

    await s3_client.put("key", LONG_VALUE)

    assert [request.url.params.get("partNumber") for request in fake_s3.requests_for("PUT")] == ["1", "1", "2"]
    assert len(fake_s3.requests_for("POST")) == 2  # noqa: PLR2004
    assert sleeps == [0.5]
    assert fake_s3.objects[BUCKET]["key"].body == LONG_VALUE


@pytest.mark.asyncio
async def test_put_mismatched_etag_is_retried(
    s3_client: S3Client, fake_s3: FakeS3Service, sleeps: list[float]
) -> None:
    """Test that an ETag not matching the sent bytes triggers a fresh attempt."""
    fake_s3.override_next_etag('"00000000000000000000000000000000"')

    await s3_client.put("key", generate_from(NEW_VALUE), value_length=len(NEW_VALUE))

    assert len(fake_s3.requests_for("PUT")) == 2  # noqa: PLR2004
    assert [request.content for request in fake_s3.requests_for("PUT")] == [NEW_VALUE, NEW_VALUE]
    assert sleeps == [0.5]


@pytest.mark.asyncio
async def test_put_stalled_body_is_retried(
    s3_client: S3Client, fake_s3: FakeS3Service, sleeps: list[float]
) -> None:
    """Test that a content generator making no progress fails the attempt as a stall and is retried."""
    starts: list[int] = []

    async def generate(pos: int, length: int) -> bytes | None:
        if pos == 0:
            starts.append(pos)
            if len(starts) == 1:
                await asyncio.sleep(10)
        return NEW_VALUE[pos : pos + length] or None

    await s3_client.put("key", generate, value_length=len(NEW_VALUE), stall_timeout=0.05)

    assert len(starts) == 2  # noqa: PLR2004
    assert sleeps == [0.5]
    assert len(fake_s3.requests_for("PUT")) == 1
    assert fake_s3.objects[BUCKET]["key"].body == NEW_VALUE


@pytest.mark.asyncio
async def test_put_missing_etag_exhausts_retries(
    s3_client: S3Client, fake_s3: FakeS3Service, sleeps: list[float]
) -> None:
    """Test that a response without an ETag fails after every retry is used up."""
    for _ in range(MAX_RETRIES + 1):
        fake_s3.override_next_etag(None)

    with pytest.raises(S3IntegrityClientException):
        await s3_client.put("key", NEW_VALUE)

    assert len(fake_s3.requests_for("PUT")) == MAX_RETRIES + 1
    assert sleeps == [0.5, 1.0, 2.0]


@pytest.mark.asyncio
async def test_put_malformed_etag(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that an ETag that is not a quoted MD5 is an integrity failure."""
    s3_client.configure(max_retries=0)
    fake_s3.override_next_etag("not-an-md5")

    with pytest.raises(S3IntegrityClientException):
        await s3_client.put("key", NEW_VALUE)


@pytest.mark.asyncio
async def test_put_too_many_parts(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that content needing more than 10000 parts fails before any request."""
    s3_client.configure(part_size=1)

    with pytest.raises(S3ConfigurationClientException):
        await s3_client.put("key", generate_from(b""), value_length=10_001)

    assert fake_s3.requests == []


@pytest.mark.asyncio
async def test_put_generator_without_length(s3_client: S3Client) -> None:
    """Test that a generator value needs an explicit length."""
    with pytest.raises(S3ConfigurationClientException):
        await s3_client.put("key", generate_from(NEW_VALUE))


@pytest.mark.asyncio
async def test_put_value_and_gen_parts(s3_client: S3Client) -> None:
    """Test that a value and a parts generator cannot be combined."""
    with pytest.raises(S3ConfigurationClientException):
        await s3_client.put("key", NEW_VALUE, gen_parts=[NEW_VALUE])


@pytest.mark.asyncio
async def test_put_unsupported_value(s3_client: S3Client, fake_s3: FakeS3Service) -> None:
    """Test that a value of an unsupported shape is refused without retries."""
    with pytest.raises(S3ContentShapeClientException):
        await s3_client.put("key", 42)

    assert fake_s3.requests == []
