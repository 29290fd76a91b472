"""Asynchronous S3 client with streaming uploads, multipart splitting and integrity checks."""

from haos3.clients.abstract import (
    AbstractS3Client,
    S3AccessDeniedClientException,
    S3ClientException,
    S3ConfigurationClientException,
    S3ContentShapeClientException,
    S3HTTPClientException,
    S3IntegrityClientException,
    S3InvalidBucketNameClientException,
    S3NoSuchBucketClientException,
    S3NoSuchKeyClientException,
    S3NoSuchUploadClientException,
    S3PreconditionFailedClientException,
    S3ProtocolClientException,
    S3ServiceClientException,
    S3StallClientException,
    S3TimeoutClientException,
    S3TransportClientException,
)
from haos3.clients.http import S3Client
from haos3.clients.pydantic import (
    S3GetObjectResponse,
    S3HeadObjectResponse,
    S3ListBucketResponse,
    S3Object,
    S3PutObjectResponse,
)
from haos3.configs.s3 import S3ClientConfig
from haos3.responses.reader import S3ObjectHeader
from haos3.transport.streaming import HttpxTransport

__all__ = [
    "AbstractS3Client",
    "HttpxTransport",
    "S3AccessDeniedClientException",
    "S3Client",
    "S3ClientConfig",
    "S3ClientException",
    "S3ConfigurationClientException",
    "S3ContentShapeClientException",
    "S3GetObjectResponse",
    "S3HTTPClientException",
    "S3HeadObjectResponse",
    "S3IntegrityClientException",
    "S3InvalidBucketNameClientException",
    "S3ListBucketResponse",
    "S3NoSuchBucketClientException",
    "S3NoSuchKeyClientException",
    "S3NoSuchUploadClientException",
    "S3Object",
    "S3ObjectHeader",
    "S3PreconditionFailedClientException",
    "S3ProtocolClientException",
    "S3PutObjectResponse",
    "S3ServiceClientException",
    "S3StallClientException",
    "S3TimeoutClientException",
    "S3TransportClientException",
]
