"""S3 providers."""

from collections.abc import AsyncGenerator

from dishka import Provider, Scope, provide

from haos3.clients.abstract import AbstractS3Client
from haos3.clients.http import S3Client
from haos3.configs.s3 import S3ClientConfig
from haos3.transport.abstract import AbstractTransport
from haos3.transport.streaming import HttpxTransport


class S3Provider(Provider):
    """S3 provider.

    Expects an `S3ClientConfig` to be provided by another provider or the container context.
    """

    @provide(scope=Scope.APP)
    async def transport(self) -> AsyncGenerator[AbstractTransport]:
        """Get the transport shared by every S3 client of the app.

        The transport's connections are released when the container is closed.
        """
        async with HttpxTransport() as transport:
            yield transport

    @provide(scope=Scope.APP)
    async def s3_client(self, s3_config: S3ClientConfig, transport: AbstractTransport) -> AbstractS3Client:
        """Get the S3 client.

        Args:
            s3_config (S3ClientConfig): The S3 client config.
            transport (AbstractTransport): The shared transport.

        Returns:
            AbstractS3Client: An `S3Client` sending through the shared transport.

        """
        return S3Client(s3_config, transport)
