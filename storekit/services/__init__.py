from .base import BaseService, LocalIOError
from .bucket_client import BucketClient
from .bundle import ServiceBundle, get_service_bundle
from .chunked_upload import (
    ChunkedUploadCoordinator,
    IncompleteUpload,
    InvalidPartNumber,
    InvalidState,
    PartResult,
    PartSpec,
    PartUploadFailed,
    UploadCancelled,
    UploadHandle,
    UploadResult,
    UploadSession,
    UploadState,
    plan_parts,
)
from .envelope import ErrorDetail, ResponseEnvelope
from .service_client import ServiceClient

__all__ = [
    "BaseService",
    "BucketClient",
    "ChunkedUploadCoordinator",
    "ErrorDetail",
    "IncompleteUpload",
    "InvalidPartNumber",
    "InvalidState",
    "LocalIOError",
    "PartResult",
    "PartSpec",
    "PartUploadFailed",
    "ResponseEnvelope",
    "ServiceBundle",
    "ServiceClient",
    "UploadCancelled",
    "UploadHandle",
    "UploadResult",
    "UploadSession",
    "UploadState",
    "get_service_bundle",
    "plan_parts",
]
