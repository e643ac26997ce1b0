"""Storage transport protocol and data types.

This module defines the abstract interface for the transport collaborator that
signs and executes object storage requests, together with the typed payloads
those requests produce.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Protocol, Sequence

from storekit.infra.storage.errors import ClientFault

# Receives the number of bytes moved since the previous call.
TransferCallback = Callable[[int], None]


@dataclass(frozen=True, slots=True)
class SigningWindow:
    """Time span during which a signed request is accepted by the provider."""

    issued_at: int
    duration_seconds: int

    @property
    def expires_at(self) -> int:
        return self.issued_at + self.duration_seconds

    def is_valid(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return self.issued_at <= current + 1 and current < self.expires_at

    def ensure_valid(self, now: float | None = None) -> None:
        """Raise ``ClientFault`` if the window has already elapsed."""
        if not self.is_valid(now):
            raise ClientFault(
                "Signing window has expired; re-sign the request",
                code="RequestExpired",
            )


@dataclass(frozen=True, slots=True)
class BucketMetadata:
    """Result of creating a bucket."""

    name: str
    region: str | None
    location: str | None = None


@dataclass(frozen=True, slots=True)
class BucketInfo:
    """One entry of a bucket listing."""

    name: str
    created_at: datetime | None = None
    region: str | None = None


@dataclass(frozen=True, slots=True)
class BucketListing:
    """All buckets owned by the account."""

    buckets: tuple[BucketInfo, ...]
    owner_id: str | None = None


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """Metadata of a stored object."""

    bucket: str
    key: str
    size_bytes: int
    etag: str | None
    content_type: str | None
    version_id: str | None = None
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class ObjectInfo:
    """One entry of an object listing."""

    key: str
    size_bytes: int
    etag: str | None = None
    last_modified: datetime | None = None


@dataclass(frozen=True, slots=True)
class ObjectListing:
    """A single page of objects in a bucket.

    ``is_truncated`` is set when more keys remain; pass ``next_token`` back as
    the continuation token to fetch the next page.
    """

    bucket: str
    prefix: str | None
    objects: tuple[ObjectInfo, ...]
    is_truncated: bool = False
    next_token: str | None = None


@dataclass(frozen=True, slots=True)
class DownloadResult:
    """Result of downloading an object to the local filesystem."""

    bucket: str
    key: str
    path: str
    size_bytes: int
    etag: str | None = None
    content_type: str | None = None


@dataclass(frozen=True, slots=True)
class DeleteResult:
    bucket: str
    key: str
    version_id: str | None = None


@dataclass(frozen=True, slots=True)
class CompletedPart:
    """Represents a completed part in a multipart upload."""

    part_number: int
    etag: str


@dataclass(frozen=True, slots=True)
class MultipartUpload:
    """Result of initiating a multipart upload."""

    upload_id: str
    bucket: str
    object_key: str


@dataclass(frozen=True, slots=True)
class CompletedUpload:
    """Provider acknowledgement of an assembled multipart object."""

    etag: str | None
    location: str | None = None
    version_id: str | None = None


class StorageTransport(Protocol):
    """Protocol for the collaborator that signs and executes storage requests.

    Every method receives the ``SigningWindow`` the request must be signed
    for. Failures are raised as ``ClientFault``, ``ServerFault`` or
    ``TransportFault``.
    """

    def create_bucket(
        self, *, bucket: str, region: str | None, window: SigningWindow
    ) -> BucketMetadata:
        """Create a bucket.

        Args:
            bucket: Full bucket identifier.
            region: Region the bucket is pinned to.
            window: Signing validity window.

        Returns:
            BucketMetadata for the new bucket.
        """
        ...

    def list_buckets(self, *, window: SigningWindow) -> BucketListing:
        """List every bucket owned by the account."""
        ...

    def put_object(
        self,
        *,
        bucket: str,
        object_key: str,
        body: BinaryIO,
        size_bytes: int,
        window: SigningWindow,
        content_type: str | None = None,
        progress: TransferCallback | None = None,
    ) -> ObjectMetadata:
        """Upload an object in a single request.

        Args:
            bucket: Target bucket identifier.
            object_key: Object key (path) in the bucket.
            body: Readable binary stream positioned at the first byte.
            size_bytes: Number of bytes ``body`` will yield.
            window: Signing validity window.
            content_type: Explicit Content-Type header, provider default if None.
            progress: Called with byte increments while the body streams.

        Returns:
            ObjectMetadata of the stored object.
        """
        ...

    def head_object(
        self, *, bucket: str, object_key: str, window: SigningWindow
    ) -> ObjectMetadata:
        """Get object metadata without downloading the content."""
        ...

    def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        destination: Path,
        window: SigningWindow,
        progress: TransferCallback | None = None,
    ) -> DownloadResult:
        """Download an object into ``destination``."""
        ...

    def list_objects(
        self,
        *,
        bucket: str,
        window: SigningWindow,
        prefix: str | None = None,
        continuation_token: str | None = None,
        max_keys: int = 1000,
    ) -> ObjectListing:
        """Return one page of objects."""
        ...

    def delete_object(
        self, *, bucket: str, object_key: str, window: SigningWindow
    ) -> DeleteResult:
        """Delete an object from storage."""
        ...

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        window: SigningWindow,
        content_type: str | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session.

        Returns:
            MultipartUpload containing the upload_id for subsequent operations.
        """
        ...

    def upload_part(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        part_number: int,
        body: bytes,
        window: SigningWindow,
    ) -> CompletedPart:
        """Upload one part of a multipart session (1-based part number)."""
        ...

    def complete_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        parts: Sequence[CompletedPart],
        window: SigningWindow,
    ) -> CompletedUpload:
        """Complete a multipart upload by combining all parts."""
        ...

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        window: SigningWindow,
    ) -> None:
        """Abort a multipart upload and release uploaded parts."""
        ...

    def presign_download(
        self,
        *,
        bucket: str,
        object_key: str,
        window: SigningWindow,
        filename: str | None = None,
    ) -> str:
        """Generate a presigned GET URL valid for the window's duration."""
        ...
