"""Request dispatch with HTTP status handling."""

import logging
from collections.abc import Callable
from datetime import datetime
from xml.etree import ElementTree as ET

import httpx

from haos3.clients.abstract import S3ServiceClientException
from haos3.configs.s3 import S3ClientConfig
from haos3.requests.builder import S3RequestBuilder, utcnow
from haos3.responses.reader import raise_for_status
from haos3.responses.xml import find_text, local_name, parse_document
from haos3.transport.abstract import AbstractTransport, HeaderCallback

logger = logging.getLogger(__name__)


class S3Requester:
    """Build requests for one config snapshot and send them through a transport."""

    def __init__(
        self,
        config: S3ClientConfig,
        transport: AbstractTransport,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the requester.

        Args:
            config: Config snapshot of the operation being run.
            transport: Transport to send requests with.
            clock: Returns the current UTC time for the `Date` header.

        """
        self.config = config
        self.builder = S3RequestBuilder(config, clock=clock)
        self._transport = transport

    async def send(
        self,
        request: httpx.Request,
        *,
        on_header: HeaderCallback | None = None,
        timeout: float | None = None,
        stall_timeout: float | None = None,
    ) -> httpx.Response:
        """Send `request` and return its successful response.

        Raises:
            S3HTTPClientException: If the service answered with a non-2xx status.

        """
        response = await self._transport.do_request(
            request,
            on_header=on_header,
            timeout=timeout,
            stall_timeout=stall_timeout,
        )
        raise_for_status(request, response)
        return response

    async def send_xml(self, request: httpx.Request, *, timeout: float | None = None) -> ET.Element:
        """Send `request` and parse its XML response body.

        S3 can report a failure inside a 200 response, e.g. when completing a
        multipart upload, so an `Error` document is raised like an error status.

        Raises:
            S3HTTPClientException: If the service reported an error.
            S3ProtocolClientException: If the body is not XML.

        """
        response = await self.send(request, timeout=timeout)
        root = parse_document(response.content)

        if local_name(root.tag) == "Error":
            code = find_text(root, "Code")
            msg = f"{request.method} {request.url.path} failed: {code}: {find_text(root, 'Message')}"
            raise S3ServiceClientException(
                msg,
                status_code=response.status_code,
                request=request,
                response=response,
                code=code,
            )

        return root
