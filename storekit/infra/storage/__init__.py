"""Object storage transport layer.

This module provides a protocol-based abstraction for the transport that signs
and executes storage requests, with an implementation for S3, MinIO, Tencent
COS and other S3-compatible services.
"""

from .client import (
    BucketInfo,
    BucketListing,
    BucketMetadata,
    CompletedPart,
    CompletedUpload,
    DeleteResult,
    DownloadResult,
    MultipartUpload,
    ObjectInfo,
    ObjectListing,
    ObjectMetadata,
    SigningWindow,
    StorageTransport,
)
from .errors import (
    ClientFault,
    FaultCategory,
    ServerFault,
    StorageError,
    TransportFault,
)

__all__ = [
    "BucketInfo",
    "BucketListing",
    "BucketMetadata",
    "ClientFault",
    "CompletedPart",
    "CompletedUpload",
    "DeleteResult",
    "DownloadResult",
    "FaultCategory",
    "MultipartUpload",
    "ObjectInfo",
    "ObjectListing",
    "ObjectMetadata",
    "ServerFault",
    "SigningWindow",
    "StorageError",
    "StorageTransport",
    "TransportFault",
]
