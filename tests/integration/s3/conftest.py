"""Conftest for S3 tests."""

from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from haos3.clients.http import S3Client
from haos3.configs.s3 import S3ClientConfig
from haos3.transport.streaming import HttpxTransport
from tests.integration.s3.fake_s3 import ACCESS_KEY, BUCKET, FIXED_NOW, HOST, SECRET_KEY, FakeS3Service


@pytest.fixture
def fake_s3() -> FakeS3Service:
    """Fake S3 service."""
    return FakeS3Service()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays the client waited for between retries."""
    return []


@pytest.fixture
def s3_config() -> S3ClientConfig:
    """S3 client config pointing at the fake service."""
    return S3ClientConfig(
        aws_access_key_id=ACCESS_KEY,
        aws_secret_access_key=SECRET_KEY,
        host=HOST,
        use_ssl=False,
        bucket=BUCKET,
    )


@pytest_asyncio.fixture
async def s3_client(
    s3_config: S3ClientConfig, fake_s3: FakeS3Service, sleeps: list[float]
) -> AsyncGenerator[S3Client]:
    """S3 client talking to the fake service, with retries that do not wait."""

    async def record_sleep(delay: float) -> None:
        sleeps.append(delay)

    transport = HttpxTransport(transport=httpx.MockTransport(fake_s3))
    async with transport, S3Client(s3_config, transport, clock=lambda: FIXED_NOW, sleep=record_sleep) as client:
        yield client
