"""Test the dishka S3 provider."""

import pytest
from dishka import Provider, Scope, make_async_container, provide

from haos3.clients.abstract import AbstractS3Client
from haos3.clients.http import S3Client
from haos3.configs.s3 import S3ClientConfig
from haos3.dependencies.dishka.s3 import S3Provider
from haos3.transport.abstract import AbstractTransport
from haos3.transport.streaming import HttpxTransport
from tests.integration.s3.fake_s3 import BUCKET


class MockConfigProvider(Provider):
    """Mock config provider."""

    def __init__(self, s3_config: S3ClientConfig) -> None:
        """Initialize the provider."""
        super().__init__()
        self._s3_config = s3_config

    @provide(scope=Scope.APP)
    async def s3_config(self) -> S3ClientConfig:
        """S3 client config."""
        return self._s3_config


@pytest.mark.asyncio
async def test_provider_builds_client(s3_config: S3ClientConfig) -> None:
    """Test that the provider builds a client on a shared transport."""
    container = make_async_container(S3Provider(), MockConfigProvider(s3_config))

    client = await container.get(AbstractS3Client)
    transport = await container.get(AbstractTransport)

    assert isinstance(client, S3Client)
    assert isinstance(transport, HttpxTransport)
    assert client.config.bucket == BUCKET
    assert await container.get(AbstractS3Client) is client

    await container.close()
