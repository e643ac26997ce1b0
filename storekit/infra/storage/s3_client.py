"""S3-compatible storage transport implementation.

This module provides the transport collaborator for AWS S3, MinIO, Tencent COS
and other S3-compatible object storage services. Request signing, TLS and
low-level retries are handled by boto3.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Sequence

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from storekit.infra.storage.client import (
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
    TransferCallback,
)
from storekit.infra.storage.errors import (
    ClientFault,
    ServerFault,
    StorageError,
    TransportFault,
)

if TYPE_CHECKING:
    from storekit.common.config import ClientConfig, Credentials

# Attempts botocore makes for throttling and connection errors
TRANSPORT_MAX_ATTEMPTS = 3
DOWNLOAD_CHUNK_BYTES = 256 * 1024
SINGLE_SHOT_THRESHOLD = 8 * 1024 * 1024
# Region that must not be sent as a LocationConstraint
DEFAULT_S3_REGION = "us-east-1"

# Provider error codes caused by the request itself rather than provider state
CLIENT_ERROR_CODES = frozenset(
    {
        "AccessDenied",
        "AuthorizationHeaderMalformed",
        "BadDigest",
        "EntityTooSmall",
        "EntityTooLarge",
        "ExpiredToken",
        "InvalidAccessKeyId",
        "InvalidArgument",
        "InvalidBucketName",
        "InvalidDigest",
        "InvalidPart",
        "InvalidPartOrder",
        "InvalidRequest",
        "InvalidToken",
        "KeyTooLongError",
        "MalformedXML",
        "MissingContentLength",
        "RequestExpired",
        "RequestTimeTooSkewed",
        "SignatureDoesNotMatch",
    }
)

_SDK_ERRORS = (ClientError, BotoCoreError, Boto3Error)


def translate_error(exc: BaseException, action: str) -> StorageError:
    """Map a boto3/botocore failure onto the storage fault taxonomy."""
    if isinstance(exc, StorageError):
        return exc
    if isinstance(exc, Boto3Error) and isinstance(exc.__context__, ClientError):
        exc = exc.__context__

    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = str(error.get("Code") or "Unknown")
        detail = error.get("Message") or str(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"Failed to {action}: {detail}"
        if code in CLIENT_ERROR_CODES:
            return ClientFault(message, code=code, http_status=status)
        return ServerFault(message, code=code, http_status=status)
    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return TransportFault(
            f"Failed to {action}: {exc}", code=type(exc).__name__
        )
    return ClientFault(f"Failed to {action}: {exc}", code=type(exc).__name__)


class S3Transport:
    """S3-compatible storage transport.

    Supports AWS S3, MinIO, Tencent COS and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(self, *, config: "ClientConfig", credentials: "Credentials") -> None:
        """Initialize the boto3 client from an immutable client configuration.

        Args:
            config: Endpoint, region, timeouts and TLS flag.
            credentials: Access key pair used for request signing.
        """
        self._config = config
        self._client = self._build_client(config, credentials)

    @staticmethod
    def _build_client(config: "ClientConfig", credentials: "Credentials") -> Any:
        """Create a boto3 S3 client from the client configuration."""
        boto_config = Config(
            signature_version="s3v4",
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            retries={"max_attempts": TRANSPORT_MAX_ATTEMPTS, "mode": "standard"},
            s3={"addressing_style": config.addressing_style},
        )

        return boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            region_name=config.region,
            aws_access_key_id=credentials.access_key,
            aws_secret_access_key=credentials.secret_key,
            use_ssl=bool(config.use_tls),
            config=boto_config,
        )

    def create_bucket(
        self, *, bucket: str, region: str | None, window: SigningWindow
    ) -> BucketMetadata:
        """Create a bucket, pinned to ``region`` when it is not the default."""
        window.ensure_valid()
        params: dict[str, Any] = {"Bucket": bucket}
        if region and region != DEFAULT_S3_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}

        try:
            response = self._client.create_bucket(**params)
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "create bucket") from exc

        return BucketMetadata(
            name=bucket, region=region, location=response.get("Location")
        )

    def list_buckets(self, *, window: SigningWindow) -> BucketListing:
        """List every bucket owned by the account."""
        window.ensure_valid()
        try:
            response = self._client.list_buckets()
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "list buckets") from exc

        buckets = tuple(
            BucketInfo(
                name=str(item["Name"]),
                created_at=item.get("CreationDate"),
                region=item.get("BucketRegion"),
            )
            for item in response.get("Buckets", [])
        )
        owner = response.get("Owner") or {}
        return BucketListing(buckets=buckets, owner_id=owner.get("ID"))

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
        """Upload an object in one request and return its stored metadata."""
        window.ensure_valid()
        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args["ContentType"] = content_type

        # Keep the threshold above the payload so the upload stays single-shot
        transfer_config = TransferConfig(
            multipart_threshold=max(int(size_bytes) + 1, SINGLE_SHOT_THRESHOLD),
            use_threads=False,
        )
        try:
            self._client.upload_fileobj(
                body,
                bucket,
                object_key,
                ExtraArgs=extra_args or None,
                Callback=progress,
                Config=transfer_config,
            )
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "upload object") from exc

        return self.head_object(bucket=bucket, object_key=object_key, window=window)

    def head_object(
        self, *, bucket: str, object_key: str, window: SigningWindow
    ) -> ObjectMetadata:
        """Get object metadata without downloading the content."""
        window.ensure_valid()
        try:
            response = self._client.head_object(Bucket=bucket, Key=object_key)
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "get object metadata") from exc

        size = response.get("ContentLength")
        return ObjectMetadata(
            bucket=bucket,
            key=object_key,
            size_bytes=int(size) if size is not None else 0,
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            version_id=response.get("VersionId"),
            last_modified=response.get("LastModified"),
        )

    def get_object(
        self,
        *,
        bucket: str,
        object_key: str,
        destination: Path,
        window: SigningWindow,
        progress: TransferCallback | None = None,
    ) -> DownloadResult:
        """Stream an object into ``destination``.

        Data lands in a sibling ``.part`` file that replaces ``destination``
        only once the body has been fully read.
        """
        window.ensure_valid()
        try:
            response = self._client.get_object(Bucket=bucket, Key=object_key)
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "download object") from exc

        staging = destination.with_name(destination.name + ".part")
        written = 0
        try:
            with open(staging, "wb") as handle:
                for chunk in response["Body"].iter_chunks(
                    chunk_size=DOWNLOAD_CHUNK_BYTES
                ):
                    handle.write(chunk)
                    written += len(chunk)
                    if progress is not None:
                        progress(len(chunk))
            os.replace(staging, destination)
        except _SDK_ERRORS as exc:
            staging.unlink(missing_ok=True)
            raise translate_error(exc, "download object") from exc
        except OSError:
            staging.unlink(missing_ok=True)
            raise

        return DownloadResult(
            bucket=bucket,
            key=object_key,
            path=str(destination),
            size_bytes=written,
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
        )

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
        window.ensure_valid()
        params: dict[str, Any] = {"Bucket": bucket, "MaxKeys": int(max_keys)}
        if prefix:
            params["Prefix"] = prefix
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        try:
            response = self._client.list_objects_v2(**params)
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "list objects") from exc

        objects = tuple(
            ObjectInfo(
                key=str(item["Key"]),
                size_bytes=int(item.get("Size") or 0),
                etag=item.get("ETag"),
                last_modified=item.get("LastModified"),
            )
            for item in response.get("Contents", [])
        )
        return ObjectListing(
            bucket=bucket,
            prefix=prefix,
            objects=objects,
            is_truncated=bool(response.get("IsTruncated")),
            next_token=response.get("NextContinuationToken"),
        )

    def delete_object(
        self, *, bucket: str, object_key: str, window: SigningWindow
    ) -> DeleteResult:
        """Delete an object from storage."""
        window.ensure_valid()
        try:
            response = self._client.delete_object(Bucket=bucket, Key=object_key)
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "delete object") from exc

        return DeleteResult(
            bucket=bucket, key=object_key, version_id=response.get("VersionId")
        )

    def init_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        window: SigningWindow,
        content_type: str | None = None,
    ) -> MultipartUpload:
        """Initialize a multipart upload session."""
        window.ensure_valid()
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if content_type:
            params["ContentType"] = content_type

        try:
            response = self._client.create_multipart_upload(**params)
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "create multipart upload") from exc

        upload_id = response.get("UploadId")
        if not upload_id:
            raise ServerFault("S3 response missing UploadId", code="MissingUploadId")

        return MultipartUpload(
            upload_id=str(upload_id),
            bucket=bucket,
            object_key=object_key,
        )

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
        """Upload one part of a multipart session."""
        window.ensure_valid()
        try:
            response = self._client.upload_part(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                PartNumber=int(part_number),
                Body=body,
            )
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "upload part") from exc

        etag = response.get("ETag")
        if not etag:
            raise ServerFault("S3 response missing part ETag", code="MissingETag")
        return CompletedPart(part_number=int(part_number), etag=str(etag))

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
        window.ensure_valid()
        multipart_payload = {
            "Parts": [
                {"ETag": part.etag, "PartNumber": int(part.part_number)}
                for part in sorted(parts, key=lambda p: p.part_number)
            ]
        }

        try:
            response = self._client.complete_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
                MultipartUpload=multipart_payload,
            )
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "complete multipart upload") from exc

        return CompletedUpload(
            etag=response.get("ETag"),
            location=response.get("Location"),
            version_id=response.get("VersionId"),
        )

    def abort_multipart_upload(
        self,
        *,
        bucket: str,
        object_key: str,
        upload_id: str,
        window: SigningWindow,
    ) -> None:
        """Abort a multipart upload and clean up uploaded parts."""
        window.ensure_valid()
        try:
            self._client.abort_multipart_upload(
                Bucket=bucket,
                Key=object_key,
                UploadId=upload_id,
            )
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "abort multipart upload") from exc

    def presign_download(
        self,
        *,
        bucket: str,
        object_key: str,
        window: SigningWindow,
        filename: str | None = None,
    ) -> str:
        """Generate a presigned URL for downloading an object."""
        window.ensure_valid()
        params: dict[str, Any] = {"Bucket": bucket, "Key": object_key}
        if filename:
            # Escape quotes in filename for Content-Disposition header
            safe_filename = filename.replace('"', '\\"')
            params["ResponseContentDisposition"] = (
                f'attachment; filename="{safe_filename}"'
            )

        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=int(window.duration_seconds),
            )
        except _SDK_ERRORS as exc:
            raise translate_error(exc, "generate download URL") from exc

        if not url:
            raise ClientFault("Generated presigned URL is empty", code="EmptyPresignedUrl")

        return str(url)
