"""AWS signature version 2 request signing.

See https://docs.aws.amazon.com/AmazonS3/latest/userguide/RESTAuthentication.html
"""

import base64
import hashlib
import hmac
from collections.abc import Mapping

import httpx

SIGNED_SUBRESOURCES = frozenset({"partNumber", "uploadId", "uploads"})
"""Query parameters that take part in the canonical resource. All others are left out."""

AMZ_HEADER_PREFIX = "x-amz-"


class S3Signer:
    """Sign requests with an access key and secret key pair."""

    def __init__(self, access_key: str, secret_key: str) -> None:
        """Initialize the signer.

        Args:
            access_key: The access key ID.
            secret_key: The secret access key.

        """
        self._access_key = access_key
        self._secret_key = secret_key.encode()

    @staticmethod
    def canonical_resource(bucket: str, path: str, query: Mapping[str, str | None]) -> str:
        """Build the canonical resource: `/bucket/path` and the signed subresources.

        Args:
            bucket: Bucket name.
            path: URL-encoded object path without a leading slash.
            query: Every query parameter of the request. A `None` value is a bare flag.

        """
        resource = f"/{bucket}/{path}"

        signed = [
            name if value is None else f"{name}={value}"
            for name, value in sorted(query.items())
            if name in SIGNED_SUBRESOURCES
        ]
        if signed:
            resource += "?" + "&".join(signed)

        return resource

    @staticmethod
    def string_to_sign(method: str, headers: httpx.Headers, canonical_resource: str) -> str:
        """Build the string the signature is computed over."""
        amz_headers = {
            name.lower(): value for name, value in headers.items() if name.lower().startswith(AMZ_HEADER_PREFIX)
        }
        canonical_amz_headers = "".join(f"{name}:{amz_headers[name]}\n" for name in sorted(amz_headers))

        return "\n".join(
            [
                method,
                headers.get("Content-MD5", ""),
                headers.get("Content-Type", ""),
                headers.get("Date", ""),
                canonical_amz_headers + canonical_resource,
            ]
        )

    def signature(self, string_to_sign: str) -> str:
        """Base64 HMAC-SHA1 of `string_to_sign`, keyed with the secret key."""
        digest = hmac.new(self._secret_key, string_to_sign.encode(), hashlib.sha1).digest()
        return base64.b64encode(digest).decode()

    def sign(self, request: httpx.Request, canonical_resource: str) -> None:
        """Set the `Authorization` header of `request`.

        The request must already carry its final `Date` and `X-Amz-*` headers.
        """
        string_to_sign = self.string_to_sign(request.method, request.headers, canonical_resource)
        request.headers["Authorization"] = f"AWS {self._access_key}:{self.signature(string_to_sign)}"
