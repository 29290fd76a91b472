"""S3 client config."""

from typing import Any, Self

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_PARTS = 10_000
"""S3 refuses multipart uploads with more parts than this."""

DEFAULT_PART_SIZE = 100 * 1024 * 1024
DEFAULT_READ_SIZE = 64 * 1024


class S3ClientConfig(BaseSettings):
    """S3 client configuration.

    This config is used to configure the `haos3.clients.http.S3Client`.
    Every field can be set via an environment variable prefixed with `S3_`,
    e.g. `S3_AWS_ACCESS_KEY_ID` or `S3_PART_SIZE`.

    Attributes:
        aws_access_key_id (str): The access key ID for authenticating API requests.
        aws_secret_access_key (str): The secret access key for authenticating API requests.
        host (str): The service host, optionally with a port. Defaults to `s3.amazonaws.com`.
        use_ssl (bool): Whether to use https. Defaults to True.
        bucket (str | None): Default bucket, used when an operation does not name one.
        prefix (str | None): Prefix prepended to every key and stripped from listings.
            It should end with the delimiter of the key naming scheme, e.g. `/`.
        max_retries (int): Retries after the first failed attempt of an operation. Defaults to 3.
        retry_delay (float): Delay in seconds before the first retry; doubles after each retry.
        list_max_keys (int): Keys to request per listing page. Defaults to 1000.
        part_size (int): Values larger than this are uploaded in parts of this size.
            Defaults to 100 MiB.
        read_size (int): Bytes to request per call of a content generator. Defaults to 64 KiB.
        timeout (float | None): Default deadline in seconds for a single operation attempt.
        stall_timeout (float | None): Seconds without body transfer progress before the
            transfer is abandoned as stalled.
        part_timeout (float | None): Deadline for each multipart part attempt. Falls back to `timeout`.
        meta_timeout (float | None): Deadline for multipart initiate and complete calls.
            Falls back to `timeout`.

    """

    model_config = SettingsConfigDict(env_prefix="S3_")

    aws_access_key_id: str = Field(description="The access key ID for authenticating API requests.")
    aws_secret_access_key: str = Field(description="The secret access key for authenticating API requests.")
    host: str = Field(default="s3.amazonaws.com", description="The service host, optionally with a port.")
    use_ssl: bool = Field(default=True, description="Whether to use https.")
    bucket: str | None = Field(default=None, description="Default bucket name.")
    prefix: str | None = Field(default=None, description="Key prefix prepended to keys and stripped from listings.")
    max_retries: int = Field(default=3, ge=0, description="Retries after the first failed attempt.")
    retry_delay: float = Field(default=0.5, ge=0, description="Initial retry delay in seconds.")
    list_max_keys: int = Field(default=1000, gt=0, description="Keys to request per listing page.")
    part_size: int = Field(default=DEFAULT_PART_SIZE, gt=0, description="Multipart threshold and part size.")
    read_size: int = Field(default=DEFAULT_READ_SIZE, gt=0, description="Bytes per content generator call.")
    timeout: float | None = Field(default=None, gt=0, description="Per-operation deadline in seconds.")
    stall_timeout: float | None = Field(default=None, gt=0, description="Stall window in seconds.")
    part_timeout: float | None = Field(default=None, gt=0, description="Per-part deadline in seconds.")
    meta_timeout: float | None = Field(default=None, gt=0, description="Initiate/complete deadline in seconds.")

    @property
    def effective_part_timeout(self) -> float | None:
        """Deadline for one multipart part attempt."""
        return self.part_timeout if self.part_timeout is not None else self.timeout

    @property
    def effective_meta_timeout(self) -> float | None:
        """Deadline for one multipart initiate or complete attempt."""
        return self.meta_timeout if self.meta_timeout is not None else self.timeout

    def reconfigured(self, **changes: Any) -> Self:
        """Return a validated copy with `changes` applied.

        Args:
            **changes: Field values to replace.

        Returns:
            A new config. The receiver is left untouched.

        """
        return self.model_validate(self.model_dump() | changes)
