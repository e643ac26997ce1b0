"""Chunked (multipart) upload coordination.

This module uploads objects too large for a single request. A payload is split
into numbered parts that upload concurrently with bounded parallelism, progress
is aggregated across parts, and the provider-side multipart session is either
completed once every part is acknowledged or aborted so no uncommitted parts
stay reserved.

Session lifecycle::

    CREATED -> PARTS_IN_FLIGHT -> COMPLETED
                               -> ABORTED

Terminal states have no outgoing transitions. Completion and abort both wait
for in-flight part uploads to settle before acting.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union

from storekit.common.config import ClientConfig, Credentials
from storekit.domain.naming import BucketRef, validate_object_key
from storekit.domain.progress import ProgressObserver, ProgressTracker
from storekit.infra.observability.metrics import record_transfer
from storekit.infra.storage.client import CompletedPart, StorageTransport
from storekit.infra.storage.errors import (
    ClientFault,
    FaultCategory,
    StorageError,
    TransportFault,
)
from storekit.services.base import BaseService, LocalIOError
from storekit.services.envelope import ResponseEnvelope

logger = logging.getLogger(__name__)

# Maximum part number allowed by S3-compatible providers
MAX_PART_NUMBER = 10000

UploadSource = Union[str, os.PathLike, bytes, bytearray, memoryview]


class UploadState(str, Enum):
    CREATED = "created"
    PARTS_IN_FLIGHT = "parts_in_flight"
    COMPLETED = "completed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({UploadState.COMPLETED, UploadState.ABORTED})


class InvalidState(ClientFault):
    """Raised when an operation is not allowed in the session's current state."""

    default_code = "InvalidState"

    @property
    def status(self) -> int:
        return 409


class IncompleteUpload(ClientFault):
    """Raised when completion is requested before every part succeeded."""

    default_code = "IncompleteUpload"

    def __init__(self, missing_parts: tuple[int, ...]) -> None:
        preview = ", ".join(str(n) for n in missing_parts[:10])
        if len(missing_parts) > 10:
            preview += ", ..."
        super().__init__(
            f"{len(missing_parts)} part(s) not uploaded: {preview}"
        )
        self.missing_parts = missing_parts

    @property
    def status(self) -> int:
        return 409


class UploadCancelled(ClientFault):
    """Raised for work refused because the session was cancelled."""

    default_code = "UploadCancelled"


class InvalidPartNumber(ClientFault):
    default_code = "InvalidPartNumber"


class PartUploadFailed(StorageError):
    """A part could not be uploaded within the retry budget.

    Category, code and status are those of the underlying fault.
    """

    def __init__(self, part_number: int, cause: StorageError, attempts: int) -> None:
        super().__init__(
            f"part {part_number} failed after {attempts} attempt(s): {cause.message}",
            code=cause.code,
            http_status=cause.http_status,
        )
        self.part_number = part_number
        self.cause = cause
        self.attempts = attempts

    @property
    def category(self) -> FaultCategory:  # type: ignore[override]
        return self.cause.category

    @property
    def status(self) -> int:
        return self.cause.status


@dataclass(frozen=True, slots=True)
class PartSpec:
    """Contiguous byte range uploaded as one part."""

    part_number: int
    offset: int
    size: int


@dataclass(frozen=True, slots=True)
class PartResult:
    part_number: int
    etag: str
    size_bytes: int


@dataclass(frozen=True, slots=True)
class UploadResult:
    """Result of a completed multipart upload."""

    bucket: str
    key: str
    session_id: str
    etag: str | None
    part_count: int
    size_bytes: int
    location: str | None = None
    version_id: str | None = None


def plan_parts(total_bytes: int, part_size: int) -> list[PartSpec]:
    """Split ``total_bytes`` into 1-based contiguous parts of ``part_size``.

    An empty payload is uploaded as a single empty part.
    """
    if part_size <= 0:
        raise ClientFault("part size must be positive", code="InvalidArgument")
    if total_bytes <= 0:
        return [PartSpec(part_number=1, offset=0, size=0)]

    count = math.ceil(total_bytes / part_size)
    if count > MAX_PART_NUMBER:
        raise ClientFault(
            f"payload needs {count} parts of {part_size} bytes; "
            f"at most {MAX_PART_NUMBER} are allowed",
            code="TooManyParts",
        )
    return [
        PartSpec(
            part_number=index + 1,
            offset=index * part_size,
            size=min(part_size, total_bytes - index * part_size),
        )
        for index in range(count)
    ]


class UploadSession:
    """Client-side state of one provider multipart session.

    Parts are recorded only by the part-completion path, under the session
    lock, and completion checks read under the same lock. Observers are
    notified after the lock is released.
    """

    def __init__(
        self,
        *,
        session_id: str,
        bucket: str,
        key: str,
        content_type: str | None = None,
        expected_parts: int | None = None,
        total_bytes: int | None = None,
        observer: ProgressObserver | None = None,
    ) -> None:
        self.session_id = session_id
        self.bucket = bucket
        self.key = key
        self.content_type = content_type
        self.expected_parts = expected_parts
        self.total_bytes = total_bytes
        self._progress = ProgressTracker(total_bytes, observer)
        self._lock = threading.RLock()
        self._settled = threading.Condition(self._lock)
        self._cancelled = threading.Event()
        self._state = UploadState.CREATED
        self._parts: dict[int, PartResult] = {}
        self._in_flight = 0
        self._finalizing = False

    def __repr__(self) -> str:
        return (
            f"UploadSession(session_id={self.session_id!r}, bucket={self.bucket!r}, "
            f"key={self.key!r}, state={self.state.value})"
        )

    @property
    def state(self) -> UploadState:
        with self._lock:
            return self._state

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def parts(self) -> tuple[PartResult, ...]:
        with self._lock:
            return tuple(self._parts[n] for n in sorted(self._parts))

    @property
    def bytes_uploaded(self) -> int:
        with self._lock:
            return sum(part.size_bytes for part in self._parts.values())

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def cancel(self) -> None:
        """Stop accepting new part uploads; in-flight parts are discarded."""
        self._cancelled.set()

    def missing_parts(self) -> tuple[int, ...]:
        with self._lock:
            return self._missing_locked()

    def wait_settled(self, timeout: float | None = None) -> bool:
        """Block until no part upload is in flight."""
        with self._settled:
            return self._settled.wait_for(lambda: self._in_flight == 0, timeout)

    def _missing_locked(self) -> tuple[int, ...]:
        if self.expected_parts is not None:
            last = self.expected_parts
        else:
            last = max(self._parts, default=1)
        return tuple(n for n in range(1, last + 1) if n not in self._parts)

    def _enter_part(self, part_number: int) -> None:
        with self._lock:
            if self._state in TERMINAL_STATES:
                raise InvalidState(
                    f"upload session is {self._state.value}; no more parts accepted"
                )
            if self._finalizing:
                raise InvalidState("upload session is being finalized")
            if self._cancelled.is_set():
                raise UploadCancelled("upload session was cancelled")
            if self.expected_parts is not None and part_number > self.expected_parts:
                raise InvalidPartNumber(
                    f"part {part_number} exceeds the {self.expected_parts} "
                    "parts planned for this session"
                )
            self._in_flight += 1
            self._state = UploadState.PARTS_IN_FLIGHT

    def _leave_part(self, result: PartResult | None) -> bool:
        """Settle one in-flight part; returns whether its result was kept.

        The observer is notified outside the session lock. The part stays in
        flight until then, so the settle barrier also waits for the event.
        """
        delta = 0
        with self._lock:
            kept = (
                result is not None
                and not self._cancelled.is_set()
                and self._state not in TERMINAL_STATES
            )
            if kept:
                previous = self._parts.get(result.part_number)
                self._parts[result.part_number] = result
                delta = result.size_bytes - (previous.size_bytes if previous else 0)
        try:
            if kept:
                self._progress.advance(delta, part_number=result.part_number)
        finally:
            with self._settled:
                self._in_flight -= 1
                self._settled.notify_all()
        return kept

    def _begin_finalize(self, *, allow_cancelled: bool) -> None:
        with self._lock:
            if self._state in TERMINAL_STATES:
                raise InvalidState(f"upload session is already {self._state.value}")
            if self._finalizing:
                raise InvalidState("upload session is already being finalized")
            if self._cancelled.is_set() and not allow_cancelled:
                raise UploadCancelled(
                    "upload session was cancelled and can only be aborted"
                )
            self._finalizing = True

    def _end_finalize(self, state: UploadState | None) -> None:
        with self._lock:
            self._finalizing = False
            if state is None:
                return
            self._state = state
            if state is UploadState.ABORTED:
                self._parts.clear()
        if state is UploadState.COMPLETED:
            self._progress.finish()


class _PayloadSource:
    """Random access to the bytes being uploaded."""

    def __init__(self, source: UploadSource) -> None:
        if isinstance(source, (bytes, bytearray, memoryview)):
            self._data: bytes | None = bytes(source)
            self._path: Path | None = None
            self.size = len(self._data)
        else:
            self._data = None
            self._path = Path(source)
            self.size = os.path.getsize(self._path)

    def read(self, spec: PartSpec) -> bytes:
        if self._data is not None:
            return self._data[spec.offset : spec.offset + spec.size]
        with open(self._path, "rb") as handle:
            handle.seek(spec.offset)
            return handle.read(spec.size)


@dataclass(frozen=True, slots=True)
class _PreparedUpload:
    session: UploadSession
    source: _PayloadSource
    plan: list[PartSpec]


class UploadHandle:
    """Non-blocking view of an upload started with ``start_upload``."""

    def __init__(
        self,
        session: UploadSession | None,
        future: "Future[ResponseEnvelope[UploadResult]]",
    ) -> None:
        self._session = session
        self._future = future

    @property
    def session(self) -> UploadSession | None:
        return self._session

    def cancel(self) -> None:
        """Stop issuing parts; the upload then aborts the remote session."""
        if self._session is not None:
            self._session.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> ResponseEnvelope[UploadResult]:
        return self._future.result(timeout)


def _as_storage_error(cause: BaseException | str) -> StorageError:
    if isinstance(cause, StorageError):
        return cause
    if isinstance(cause, OSError):
        return LocalIOError(f"Local file operation failed: {cause}")
    return StorageError(str(cause) or type(cause).__name__, code="UploadFailed")


class ChunkedUploadCoordinator(BaseService):
    """Drives multipart uploads against a storage transport.

    The low-level steps (``begin_upload``, ``upload_part``) raise
    ``StorageError``; finalization (``complete_upload``, ``fail_upload``,
    ``abort``) and the whole-object helpers (``upload``, ``start_upload``)
    return response envelopes.
    """

    def __init__(
        self,
        transport: StorageTransport,
        *,
        config: ClientConfig,
        credentials: Credentials,
    ) -> None:
        super().__init__(transport, config=config, credentials=credentials)
        self._drivers: ThreadPoolExecutor | None = None
        self._drivers_lock = threading.Lock()

    def __enter__(self) -> "ChunkedUploadCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for uploads started with ``start_upload`` and release threads."""
        with self._drivers_lock:
            drivers, self._drivers = self._drivers, None
        if drivers is not None:
            drivers.shutdown(wait=True)

    def _resolve_bucket(self, bucket: BucketRef | str) -> str:
        if isinstance(bucket, BucketRef):
            return bucket.identifier
        return BucketRef(name=bucket, account_id=self._config.account_id).identifier

    def begin_upload(
        self,
        bucket: BucketRef | str,
        key: str,
        content_type: str | None = None,
        *,
        expected_parts: int | None = None,
        total_bytes: int | None = None,
        observer: ProgressObserver | None = None,
    ) -> UploadSession:
        """Open a multipart session with the provider.

        Args:
            bucket: Logical bucket name or a ``BucketRef``.
            key: Object key the assembled upload is stored under.
            content_type: Content-Type of the final object.
            expected_parts: Number of parts the caller will upload, when known.
            total_bytes: Size of the whole payload, when known.
            observer: Receives cumulative progress as parts complete.

        Raises:
            StorageError: If validation or the provider request fails.
        """
        bucket_id = self._resolve_bucket(bucket)
        validate_object_key(key)
        if expected_parts is not None and not 1 <= expected_parts <= MAX_PART_NUMBER:
            raise InvalidPartNumber(
                f"expected_parts must be between 1 and {MAX_PART_NUMBER}"
            )

        upload = self._transport.init_multipart_upload(
            bucket=bucket_id,
            object_key=key,
            content_type=content_type,
            window=self._window(),
        )
        logger.info(
            "multipart_upload_started bucket=%s key=%s session_id=%s",
            bucket_id,
            key,
            upload.upload_id,
            extra={
                "extra": {
                    "bucket": bucket_id,
                    "key": key,
                    "session_id": upload.upload_id,
                    "expected_parts": expected_parts,
                }
            },
        )
        return UploadSession(
            session_id=upload.upload_id,
            bucket=bucket_id,
            key=key,
            content_type=content_type,
            expected_parts=expected_parts,
            total_bytes=total_bytes,
            observer=observer,
        )

    def upload_part(
        self, session: UploadSession, part_number: int, data: bytes
    ) -> PartResult:
        """Upload one contiguous byte range as ``part_number``.

        Transport faults are retried up to ``part_retries`` more times. A
        result that lands after the session was cancelled is returned but not
        recorded.

        Raises:
            InvalidPartNumber: If ``part_number`` is outside 1..10000.
            InvalidState: If the session is terminal or being finalized.
            UploadCancelled: If the session was cancelled.
            PartUploadFailed: If the part could not be uploaded.
        """
        if not 1 <= part_number <= MAX_PART_NUMBER:
            raise InvalidPartNumber(
                f"part_number must be between 1 and {MAX_PART_NUMBER}"
            )
        session._enter_part(part_number)
        result: PartResult | None = None
        try:
            result = self._send_part(session, part_number, data)
        finally:
            kept = session._leave_part(result)

        if kept:
            if self._config.enable_metrics:
                record_transfer("upload", result.size_bytes)
        else:
            logger.info(
                "multipart_part_discarded session_id=%s part=%s",
                session.session_id,
                part_number,
                extra={
                    "extra": {"session_id": session.session_id, "part": part_number}
                },
            )
        return result

    def _send_part(
        self, session: UploadSession, part_number: int, data: bytes
    ) -> PartResult:
        attempts = self._config.part_retries + 1
        last_fault: TransportFault | None = None
        for attempt in range(1, attempts + 1):
            if attempt > 1 and session.cancelled:
                raise UploadCancelled("upload session was cancelled")
            try:
                completed = self._transport.upload_part(
                    bucket=session.bucket,
                    object_key=session.key,
                    upload_id=session.session_id,
                    part_number=part_number,
                    body=data,
                    window=self._window(),
                )
            except TransportFault as exc:
                last_fault = exc
                logger.warning(
                    "multipart_part_retry session_id=%s part=%s attempt=%s error=%s",
                    session.session_id,
                    part_number,
                    attempt,
                    exc,
                    extra={
                        "extra": {
                            "session_id": session.session_id,
                            "part": part_number,
                            "attempt": attempt,
                        }
                    },
                )
                continue
            except StorageError as exc:
                raise PartUploadFailed(part_number, exc, attempt) from exc
            return PartResult(
                part_number=part_number, etag=completed.etag, size_bytes=len(data)
            )

        assert last_fault is not None
        raise PartUploadFailed(part_number, last_fault, attempts) from last_fault

    def complete_upload(
        self, session: UploadSession
    ) -> ResponseEnvelope[UploadResult]:
        """Finalize the session once every part has been acknowledged."""
        return self._execute(
            "complete_multipart_upload",
            lambda: self._complete(session),
            bucket=session.bucket,
            key=session.key,
            session_id=session.session_id,
        )

    def _complete(self, session: UploadSession) -> UploadResult:
        session._begin_finalize(allow_cancelled=False)
        final_state: UploadState | None = None
        try:
            session.wait_settled()
            missing = session.missing_parts()
            if missing:
                raise IncompleteUpload(missing)
            parts = session.parts
            completed = self._transport.complete_multipart_upload(
                bucket=session.bucket,
                object_key=session.key,
                upload_id=session.session_id,
                parts=[
                    CompletedPart(part_number=part.part_number, etag=part.etag)
                    for part in parts
                ],
                window=self._window(),
            )
            final_state = UploadState.COMPLETED
        finally:
            session._end_finalize(final_state)

        return UploadResult(
            bucket=session.bucket,
            key=session.key,
            session_id=session.session_id,
            etag=completed.etag,
            part_count=len(parts),
            size_bytes=sum(part.size_bytes for part in parts),
            location=completed.location,
            version_id=completed.version_id,
        )

    def fail_upload(
        self, session: UploadSession, cause: BaseException | str
    ) -> ResponseEnvelope[UploadResult]:
        """Abort the remote session and report ``cause`` as the failure.

        If the remote abort itself fails, the envelope carries that error and
        the session stays non-terminal so the abort can be retried.
        """
        failure = _as_storage_error(cause)
        return self._execute(
            "abort_multipart_upload",
            lambda: self._fail(session, failure),
            bucket=session.bucket,
            key=session.key,
            session_id=session.session_id,
        )

    def _fail(self, session: UploadSession, failure: StorageError) -> UploadResult:
        session.cancel()
        session._begin_finalize(allow_cancelled=True)
        final_state: UploadState | None = None
        try:
            session.wait_settled()
            self._transport.abort_multipart_upload(
                bucket=session.bucket,
                object_key=session.key,
                upload_id=session.session_id,
                window=self._window(),
            )
            final_state = UploadState.ABORTED
        finally:
            session._end_finalize(final_state)
        raise failure

    def abort(self, session: UploadSession) -> ResponseEnvelope[UploadResult]:
        """Caller-initiated cancellation of a manually driven session."""
        return self.fail_upload(session, UploadCancelled("upload cancelled by caller"))

    def upload(
        self,
        bucket: BucketRef | str,
        key: str,
        source: UploadSource,
        content_type: str | None = None,
        *,
        observer: ProgressObserver | None = None,
        part_size: int | None = None,
    ) -> ResponseEnvelope[UploadResult]:
        """Upload ``source`` (a path or bytes) as a multipart object, blocking."""
        prepared = self._prepare(bucket, key, source, content_type, observer, part_size)
        if not prepared.ok:
            return _failed_like(prepared)
        return self._drive(prepared.data)

    def start_upload(
        self,
        bucket: BucketRef | str,
        key: str,
        source: UploadSource,
        content_type: str | None = None,
        *,
        observer: ProgressObserver | None = None,
        part_size: int | None = None,
    ) -> UploadHandle:
        """Start an upload in the background and return a handle to it."""
        prepared = self._prepare(bucket, key, source, content_type, observer, part_size)
        if not prepared.ok:
            future: Future[ResponseEnvelope[UploadResult]] = Future()
            future.set_result(_failed_like(prepared))
            return UploadHandle(None, future)

        with self._drivers_lock:
            if self._drivers is None:
                self._drivers = ThreadPoolExecutor(thread_name_prefix="storekit-upload")
            future = self._drivers.submit(self._drive, prepared.data)
        return UploadHandle(prepared.data.session, future)

    def _prepare(
        self,
        bucket: BucketRef | str,
        key: str,
        source: UploadSource,
        content_type: str | None,
        observer: ProgressObserver | None,
        part_size: int | None,
    ) -> ResponseEnvelope[_PreparedUpload]:
        def action() -> _PreparedUpload:
            payload = _PayloadSource(source)
            plan = plan_parts(payload.size, part_size or self._config.part_size_bytes)
            session = self.begin_upload(
                bucket,
                key,
                content_type,
                expected_parts=len(plan),
                total_bytes=payload.size,
                observer=observer,
            )
            return _PreparedUpload(session=session, source=payload, plan=plan)

        return self._execute("initiate_multipart_upload", action, key=key)

    def _upload_planned_part(
        self, session: UploadSession, source: _PayloadSource, spec: PartSpec
    ) -> PartResult:
        try:
            return self.upload_part(session, spec.part_number, source.read(spec))
        except UploadCancelled:
            raise
        except OSError as exc:
            session.cancel()
            raise LocalIOError(f"Local file operation failed: {exc}") from exc
        except BaseException:
            session.cancel()
            raise

    def _drive(self, prepared: _PreparedUpload) -> ResponseEnvelope[UploadResult]:
        session = prepared.session
        slots = threading.BoundedSemaphore(self._config.max_concurrency)
        futures: list[Future[PartResult]] = []

        with ThreadPoolExecutor(
            max_workers=self._config.max_concurrency,
            thread_name_prefix="storekit-part",
        ) as pool:
            for spec in prepared.plan:
                slots.acquire()
                if session.cancelled:
                    slots.release()
                    break
                future = pool.submit(
                    self._upload_planned_part, session, prepared.source, spec
                )
                future.add_done_callback(lambda _: slots.release())
                futures.append(future)

        failure: StorageError | None = None
        unexpected: BaseException | None = None
        for future in futures:
            exc = future.exception()
            if exc is None or isinstance(exc, UploadCancelled):
                continue
            if isinstance(exc, StorageError):
                failure = failure or exc
            else:
                unexpected = unexpected or exc

        if unexpected is not None:
            self.fail_upload(session, unexpected)
            raise unexpected
        if failure is not None:
            return self.fail_upload(session, failure)
        if session.cancelled:
            return self.fail_upload(
                session, UploadCancelled("upload cancelled by caller")
            )
        completed = self.complete_upload(session)
        # A cancel landing after the check above still has to release the parts
        if (
            completed.error is not None
            and completed.error.code == UploadCancelled.default_code
        ):
            return self.fail_upload(
                session, UploadCancelled("upload cancelled by caller")
            )
        return completed


def _failed_like(envelope: ResponseEnvelope) -> ResponseEnvelope[UploadResult]:
    return ResponseEnvelope(
        status=envelope.status, message=envelope.message, error=envelope.error
    )
