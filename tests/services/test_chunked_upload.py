"""Tests for ChunkedUploadCoordinator."""

from __future__ import annotations

import threading

import pytest

from storekit.domain.progress import callback_observer
from storekit.infra.storage.errors import (
    ClientFault,
    FaultCategory,
    ServerFault,
    TransportFault,
)
from storekit.services.chunked_upload import (
    ChunkedUploadCoordinator,
    IncompleteUpload,
    InvalidPartNumber,
    InvalidState,
    PartUploadFailed,
    UploadCancelled,
    UploadState,
    plan_parts,
)

PAYLOAD = b"0123456789"


@pytest.fixture()
def coordinator(transport, config, credentials):
    with ChunkedUploadCoordinator(
        transport, config=config, credentials=credentials
    ) as coordinator:
        yield coordinator


class TestPlanParts:
    def test_splits_into_contiguous_parts(self):
        plan = plan_parts(10, 4)

        assert [(p.part_number, p.offset, p.size) for p in plan] == [
            (1, 0, 4),
            (2, 4, 4),
            (3, 8, 2),
        ]

    def test_empty_payload_is_one_empty_part(self):
        plan = plan_parts(0, 4)

        assert len(plan) == 1
        assert plan[0].size == 0

    def test_rejects_more_than_ten_thousand_parts(self):
        with pytest.raises(ClientFault, match="TooManyParts"):
            plan_parts(10001, 1)


class TestManualSession:
    def test_begin_upload_opens_session_on_suffixed_bucket(
        self, coordinator, transport
    ):
        session = coordinator.begin_upload(
            "media", "video.mp4", "video/mp4", expected_parts=3
        )

        assert session.state is UploadState.CREATED
        assert session.bucket == "media-1250000000"
        assert session.key == "video.mp4"
        assert transport.uploads[session.session_id]["content_type"] == "video/mp4"

    def test_parts_complete_out_of_order(self, coordinator, transport):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=3)

        coordinator.upload_part(session, 3, b"89")
        coordinator.upload_part(session, 1, b"0123")
        coordinator.upload_part(session, 2, b"4567")
        envelope = coordinator.complete_upload(session)

        assert envelope.ok
        assert envelope.data.part_count == 3
        assert envelope.data.size_bytes == 10
        assert session.state is UploadState.COMPLETED
        completed = transport.uploads[session.session_id]["completed_parts"]
        assert [part.part_number for part in completed] == [1, 2, 3]
        assert transport.objects[(session.bucket, "video.mp4")]["data"] == PAYLOAD

    def test_complete_with_missing_part_is_rejected(self, coordinator, transport):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=3)
        coordinator.upload_part(session, 1, b"0123")
        coordinator.upload_part(session, 3, b"89")

        envelope = coordinator.complete_upload(session)

        assert not envelope.ok
        assert envelope.status == 409
        assert envelope.error.code == "IncompleteUpload"
        assert session.missing_parts() == (2,)
        assert session.state is UploadState.PARTS_IN_FLIGHT
        assert "complete_multipart_upload" not in transport.calls

        coordinator.upload_part(session, 2, b"4567")
        assert coordinator.complete_upload(session).ok

    def test_incomplete_upload_lists_missing_parts(self):
        exc = IncompleteUpload((2, 5))

        assert exc.missing_parts == (2, 5)
        assert exc.status == 409
        assert "2, 5" in str(exc)

    def test_no_parts_accepted_after_completion(self, coordinator):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=1)
        coordinator.upload_part(session, 1, PAYLOAD)
        assert coordinator.complete_upload(session).ok

        with pytest.raises(InvalidState):
            coordinator.upload_part(session, 2, b"x")

        second = coordinator.complete_upload(session)
        assert second.status == 409
        assert second.error.code == "InvalidState"

    def test_part_number_out_of_range(self, coordinator):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=2)

        with pytest.raises(InvalidPartNumber):
            coordinator.upload_part(session, 0, b"x")
        with pytest.raises(InvalidPartNumber):
            coordinator.upload_part(session, 3, b"x")

    def test_transport_fault_is_retried(self, coordinator, transport):
        transport.part_faults[1].append(
            TransportFault("connection reset", code="ConnectionClosedError")
        )
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=1)

        result = coordinator.upload_part(session, 1, PAYLOAD)

        assert result.part_number == 1
        assert transport.part_attempts[1] == 2
        assert session.parts == (result,)

    def test_retry_budget_exhausted(self, coordinator, transport):
        transport.part_faults[1].extend(
            TransportFault("timed out", code="ReadTimeoutError") for _ in range(3)
        )
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=1)

        with pytest.raises(PartUploadFailed) as exc_info:
            coordinator.upload_part(session, 1, PAYLOAD)

        assert exc_info.value.attempts == 3
        assert exc_info.value.category is FaultCategory.TRANSPORT
        assert exc_info.value.status == 503
        assert session.parts == ()

    def test_server_fault_is_not_retried(self, coordinator, transport):
        transport.part_faults[1].append(
            ServerFault("quota exceeded", code="QuotaExceeded", http_status=403)
        )
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=1)

        with pytest.raises(PartUploadFailed) as exc_info:
            coordinator.upload_part(session, 1, PAYLOAD)

        assert transport.part_attempts[1] == 1
        assert exc_info.value.status == 403
        assert exc_info.value.code == "QuotaExceeded"

    def test_fail_upload_aborts_remote_session(self, coordinator, transport):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=2)
        coordinator.upload_part(session, 1, b"0123")

        envelope = coordinator.fail_upload(
            session, ServerFault("disk full", code="InternalError", http_status=500)
        )

        assert envelope.status == 500
        assert envelope.error.code == "InternalError"
        assert session.state is UploadState.ABORTED
        assert session.parts == ()
        assert transport.uploads[session.session_id]["aborted"]
        assert transport.uploads[session.session_id]["parts"] == {}
        with pytest.raises(InvalidState):
            coordinator.upload_part(session, 2, b"4567")

    def test_failed_abort_can_be_retried(self, coordinator, transport):
        transport.faults["abort_multipart_upload"].append(
            TransportFault("unreachable", code="EndpointConnectionError")
        )
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=1)

        first = coordinator.abort(session)
        assert first.status == 503
        assert session.state is not UploadState.ABORTED

        second = coordinator.abort(session)
        assert second.status == 400
        assert second.error.code == "UploadCancelled"
        assert session.state is UploadState.ABORTED

    def test_cancelled_session_refuses_parts_and_completion(self, coordinator):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=1)
        session.cancel()

        with pytest.raises(UploadCancelled):
            coordinator.upload_part(session, 1, PAYLOAD)

        envelope = coordinator.complete_upload(session)
        assert envelope.status == 400
        assert envelope.error.code == "UploadCancelled"

    def test_signing_window_for_every_part(self, coordinator, transport):
        session = coordinator.begin_upload("media", "video.mp4", expected_parts=2)
        coordinator.upload_part(session, 1, b"0123")
        coordinator.upload_part(session, 2, b"4567")

        windows = [w for name, w in transport.windows if name == "upload_part"]
        assert len(windows) == 2
        assert all(w.duration_seconds == 600 for w in windows)


class TestUpload:
    def test_uploads_bytes_in_parts(self, coordinator, transport):
        envelope = coordinator.upload("media", "video.mp4", PAYLOAD, "video/mp4")

        assert envelope.ok
        assert envelope.status == 200
        assert envelope.message == "Success"
        assert envelope.data.part_count == 3
        assert envelope.data.key == "video.mp4"
        stored = transport.objects[("media-1250000000", "video.mp4")]
        assert stored["data"] == PAYLOAD
        assert stored["content_type"] == "video/mp4"

    def test_uploads_file(self, coordinator, transport, tmp_path):
        source = tmp_path / "video.mp4"
        source.write_bytes(PAYLOAD * 3)

        envelope = coordinator.upload("media", "video.mp4", source, part_size=8)

        assert envelope.ok
        assert envelope.data.part_count == 4
        stored = transport.objects[("media-1250000000", "video.mp4")]
        assert stored["data"] == PAYLOAD * 3

    def test_missing_source_file_is_reported(self, coordinator, transport, tmp_path):
        envelope = coordinator.upload("media", "video.mp4", tmp_path / "missing.mp4")

        assert envelope.status == 400
        assert envelope.error.code == "LocalIOError"
        assert "init_multipart_upload" not in transport.calls

    def test_progress_is_monotonic_and_ends_at_total(self, coordinator):
        events = []

        envelope = coordinator.upload(
            "media",
            "video.mp4",
            PAYLOAD,
            observer=callback_observer(lambda done, total: events.append((done, total))),
        )

        assert envelope.ok
        transferred = [done for done, _ in events]
        assert transferred == sorted(transferred)
        assert events[-1] == (10, 10)

    def test_part_failure_aborts_upload(self, coordinator, transport):
        transport.part_faults[2].extend(
            TransportFault("timed out", code="ReadTimeoutError") for _ in range(3)
        )

        envelope = coordinator.upload("media", "video.mp4", PAYLOAD)

        assert envelope.status == 503
        assert envelope.error.category is FaultCategory.TRANSPORT
        assert "abort_multipart_upload" in transport.calls
        assert "complete_multipart_upload" not in transport.calls
        assert ("media-1250000000", "video.mp4") not in transport.objects

    def test_concurrency_is_bounded(self, coordinator, transport, config):
        envelope = coordinator.upload("media", "video.mp4", PAYLOAD * 4, part_size=2)

        assert envelope.ok
        assert envelope.data.part_count == 20
        assert 1 <= transport.max_parts_in_flight <= config.max_concurrency

    def test_init_failure_is_reported(self, coordinator, transport):
        transport.faults["init_multipart_upload"].append(
            ClientFault("Access Denied", code="AccessDenied", http_status=403)
        )

        handle = coordinator.start_upload("media", "video.mp4", PAYLOAD)

        assert handle.session is None
        envelope = handle.result(timeout=5)
        assert envelope.status == 400
        assert envelope.error.code == "AccessDenied"


class TestCancellation:
    def test_cancel_with_parts_in_flight(self, coordinator, transport, config):
        transport.part_gate = threading.Event()

        handle = coordinator.start_upload(
            "media", "video.mp4", PAYLOAD + b"ab", part_size=2
        )
        for _ in range(config.max_concurrency):
            assert transport.parts_started.acquire(timeout=5)
        session = handle.session
        assert session.in_flight == config.max_concurrency

        handle.cancel()
        transport.part_gate.set()
        envelope = handle.result(timeout=10)

        assert envelope.status == 400
        assert envelope.error.code == "UploadCancelled"
        assert session.state is UploadState.ABORTED
        assert session.parts == ()
        assert session.in_flight == 0
        assert len(transport.part_attempts) == config.max_concurrency
        assert "complete_multipart_upload" not in transport.calls
        assert transport.uploads[session.session_id]["aborted"]
        assert transport.uploads[session.session_id]["parts"] == {}

    def test_cancel_racing_completion_aborts_remote_session(
        self, coordinator, transport, monkeypatch
    ):
        sessions = []
        complete_upload = coordinator.complete_upload

        def cancel_then_complete(session):
            sessions.append(session)
            session.cancel()
            return complete_upload(session)

        monkeypatch.setattr(coordinator, "complete_upload", cancel_then_complete)

        envelope = coordinator.upload("media", "video.mp4", PAYLOAD)

        session = sessions[0]
        assert envelope.status == 400
        assert envelope.error.code == "UploadCancelled"
        assert session.state is UploadState.ABORTED
        assert session.parts == ()
        assert transport.uploads[session.session_id]["aborted"]
        assert "complete_multipart_upload" not in transport.calls


class TestProgressDelivery:
    def test_slow_observer_does_not_hold_session_lock(self, coordinator):
        entered = threading.Event()
        release = threading.Event()

        class SlowObserver:
            def on_progress(self, event):
                entered.set()
                release.wait(timeout=10)

        session = coordinator.begin_upload(
            "media", "video.mp4", expected_parts=2, observer=SlowObserver()
        )
        uploader = threading.Thread(
            target=coordinator.upload_part, args=(session, 1, b"0123")
        )
        uploader.start()
        try:
            assert entered.wait(timeout=5)

            observed = []
            reader = threading.Thread(
                target=lambda: observed.append(
                    (session.bytes_uploaded, session.missing_parts())
                )
            )
            reader.start()
            reader.join(timeout=2)

            assert observed == [(4, (2,))]
            assert session.in_flight == 1
            assert not session.wait_settled(timeout=0.05)
        finally:
            release.set()
            uploader.join(timeout=5)

        assert session.in_flight == 0
        assert session.wait_settled(timeout=1)
