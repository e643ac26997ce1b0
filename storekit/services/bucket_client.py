"""Object-level operations scoped to a single bucket.

Every public method returns a ``ResponseEnvelope``; failures are reported in
the envelope rather than raised. ``iter_objects`` is the exception: it is a
generator over every page and raises ``StorageError`` when a page fails.
"""

from __future__ import annotations

import io
import os
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator, Union

from storekit.common.config import ClientConfig, Credentials
from storekit.domain.encoding import decode_data_uri
from storekit.domain.naming import BucketRef, validate_object_key
from storekit.domain.progress import ProgressObserver, ProgressTracker
from storekit.infra.observability.metrics import record_transfer
from storekit.infra.storage.client import (
    DeleteResult,
    DownloadResult,
    ObjectInfo,
    ObjectListing,
    ObjectMetadata,
    StorageTransport,
)
from storekit.infra.storage.errors import ClientFault
from storekit.services.base import BaseService
from storekit.services.chunked_upload import ChunkedUploadCoordinator, UploadResult
from storekit.services.envelope import ResponseEnvelope

MAX_LIST_PAGE_SIZE = 1000

ObjectSource = Union[str, os.PathLike, bytes, bytearray, memoryview]


@contextmanager
def _open_body(source: ObjectSource) -> Iterator[tuple[BinaryIO, int]]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        data = bytes(source)
        yield io.BytesIO(data), len(data)
        return
    with open(source, "rb") as handle:
        yield handle, os.fstat(handle.fileno()).st_size


class BucketClient(BaseService):
    """Client for objects stored in one ``<name>-<account-id>`` bucket."""

    def __init__(
        self,
        transport: StorageTransport,
        *,
        bucket: BucketRef,
        config: ClientConfig,
        credentials: Credentials,
        uploads: ChunkedUploadCoordinator | None = None,
    ) -> None:
        super().__init__(transport, config=config, credentials=credentials)
        self._bucket = bucket
        self._uploads = uploads

    @property
    def bucket(self) -> BucketRef:
        return self._bucket

    @property
    def name(self) -> str:
        return self._bucket.identifier

    @property
    def uploads(self) -> ChunkedUploadCoordinator:
        if self._uploads is None:
            self._uploads = ChunkedUploadCoordinator(
                self._transport, config=self._config, credentials=self._credentials
            )
        return self._uploads

    def put_object(
        self,
        key: str,
        source: ObjectSource,
        content_type: str | None = None,
        *,
        observer: ProgressObserver | None = None,
    ) -> ResponseEnvelope[ObjectMetadata]:
        """Upload ``source`` (a file path or bytes) in a single request.

        Args:
            key: Object key in this bucket.
            source: Path of a local file, or the object's bytes.
            content_type: Sent as an explicit Content-Type header when given.
            observer: Receives cumulative ``(bytes_transferred, total_bytes)``.
        """
        return self._execute(
            "put_object",
            lambda: self._put(key, source, content_type, observer),
            bucket=self.name,
            key=key,
        )

    def put_object_from_encoded(
        self,
        key: str,
        encoded: str,
        *,
        observer: ProgressObserver | None = None,
    ) -> ResponseEnvelope[ObjectMetadata]:
        """Upload a ``data:<content-type>;base64,<payload>`` string.

        The content type carried by the payload becomes the object's
        Content-Type.
        """

        def action() -> ObjectMetadata:
            decoded = decode_data_uri(encoded)
            return self._put(key, decoded.data, decoded.content_type, observer)

        return self._execute(
            "put_object_from_encoded", action, bucket=self.name, key=key
        )

    def _put(
        self,
        key: str,
        source: ObjectSource,
        content_type: str | None,
        observer: ProgressObserver | None,
    ) -> ObjectMetadata:
        validate_object_key(key)
        with _open_body(source) as (body, size):
            tracker = ProgressTracker(size, observer)
            metadata = self._transport.put_object(
                bucket=self.name,
                object_key=key,
                body=body,
                size_bytes=size,
                content_type=content_type,
                window=self._window(),
                progress=tracker.advance,
            )
            tracker.finish()
        if self._config.enable_metrics:
            record_transfer("upload", size)
        return metadata

    def put_large_object(
        self,
        key: str,
        source: ObjectSource,
        content_type: str | None = None,
        *,
        observer: ProgressObserver | None = None,
        part_size: int | None = None,
    ) -> ResponseEnvelope[UploadResult]:
        """Upload ``source`` in parts through the chunked upload coordinator."""
        return self.uploads.upload(
            self._bucket,
            key,
            source,
            content_type,
            observer=observer,
            part_size=part_size,
        )

    def list_objects(
        self,
        prefix: str | None = None,
        *,
        continuation_token: str | None = None,
        max_keys: int = MAX_LIST_PAGE_SIZE,
    ) -> ResponseEnvelope[ObjectListing]:
        """Return one page of objects.

        When ``data.is_truncated`` is set, call again with
        ``continuation_token=data.next_token`` for the next page, or use
        ``iter_objects`` to walk them all.
        """

        def action() -> ObjectListing:
            if not 1 <= max_keys <= MAX_LIST_PAGE_SIZE:
                raise ClientFault(
                    f"max_keys must be between 1 and {MAX_LIST_PAGE_SIZE}",
                    code="InvalidArgument",
                )
            return self._transport.list_objects(
                bucket=self.name,
                prefix=prefix,
                continuation_token=continuation_token,
                max_keys=max_keys,
                window=self._window(),
            )

        return self._execute("list_objects", action, bucket=self.name, prefix=prefix)

    def iter_objects(
        self, prefix: str | None = None, *, page_size: int = MAX_LIST_PAGE_SIZE
    ) -> Iterator[ObjectInfo]:
        """Lazily yield every object under ``prefix``, one page at a time.

        Raises:
            StorageError: If fetching a page fails.
        """
        token: str | None = None
        while True:
            page = self._transport.list_objects(
                bucket=self.name,
                prefix=prefix,
                continuation_token=token,
                max_keys=page_size,
                window=self._window(),
            )
            yield from page.objects
            if not page.is_truncated or not page.next_token:
                return
            token = page.next_token

    def get_object(
        self,
        key: str,
        destination_dir: str | os.PathLike,
        destination_file_name: str,
        *,
        observer: ProgressObserver | None = None,
    ) -> ResponseEnvelope[DownloadResult]:
        """Download ``key`` to ``destination_dir/destination_file_name``.

        The directory is created when missing. With an observer, the object
        size is read first so every progress event carries the total.
        """

        def action() -> DownloadResult:
            validate_object_key(key)
            file_name = destination_file_name
            if not file_name or Path(file_name).name != file_name:
                raise ClientFault(
                    "destination_file_name must be a bare file name",
                    code="InvalidArgument",
                )
            directory = Path(destination_dir)
            directory.mkdir(parents=True, exist_ok=True)

            total: int | None = None
            if observer is not None:
                total = self._transport.head_object(
                    bucket=self.name, object_key=key, window=self._window()
                ).size_bytes
            tracker = ProgressTracker(total, observer)
            result = self._transport.get_object(
                bucket=self.name,
                object_key=key,
                destination=directory / destination_file_name,
                window=self._window(),
                progress=tracker.advance,
            )
            tracker.finish()
            if self._config.enable_metrics:
                record_transfer("download", result.size_bytes)
            return result

        return self._execute("get_object", action, bucket=self.name, key=key)

    def head_object(self, key: str) -> ResponseEnvelope[ObjectMetadata]:
        def action() -> ObjectMetadata:
            validate_object_key(key)
            return self._transport.head_object(
                bucket=self.name, object_key=key, window=self._window()
            )

        return self._execute("head_object", action, bucket=self.name, key=key)

    def delete_object(self, key: str) -> ResponseEnvelope[DeleteResult]:
        """Delete exactly ``key`` from this bucket."""

        def action() -> DeleteResult:
            validate_object_key(key)
            return self._transport.delete_object(
                bucket=self.name, object_key=key, window=self._window()
            )

        return self._execute("delete_object", action, bucket=self.name, key=key)

    def presign_download(
        self,
        key: str,
        *,
        expires_in: int | None = None,
        filename: str | None = None,
    ) -> ResponseEnvelope[str]:
        """Generate a GET URL valid for ``expires_in`` seconds.

        Defaults to the credential validity window.
        """

        def action() -> str:
            validate_object_key(key)
            return self._transport.presign_download(
                bucket=self.name,
                object_key=key,
                filename=filename,
                window=self._window(expires_in),
            )

        return self._execute("presign_download", action, bucket=self.name, key=key)
