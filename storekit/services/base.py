from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from storekit.common.config import ClientConfig, Credentials
from storekit.infra.observability.metrics import record_operation
from storekit.infra.storage.client import SigningWindow, StorageTransport
from storekit.infra.storage.errors import ClientFault, StorageError
from storekit.services.envelope import ResponseEnvelope

T = TypeVar("T")

logger = logging.getLogger(__name__)


class LocalIOError(ClientFault):
    """Raised when reading a source file or writing a destination file fails."""

    default_code = "LocalIOError"


class BaseService:
    """Provides the envelope boundary and helpers shared by storage clients."""

    def __init__(
        self,
        transport: StorageTransport,
        *,
        config: ClientConfig,
        credentials: Credentials,
    ) -> None:
        self._transport = transport
        self._config = config
        self._credentials = credentials

    @property
    def transport(self) -> StorageTransport:
        return self._transport

    @property
    def config(self) -> ClientConfig:
        return self._config

    def _window(self, validity_seconds: int | None = None) -> SigningWindow:
        return self._credentials.signing_window(validity_seconds)

    def _execute(
        self, operation: str, action: Callable[[], T], **context: object
    ) -> ResponseEnvelope[T]:
        """Run ``action`` and convert its outcome into a response envelope."""
        started = time.perf_counter()
        try:
            data = action()
        except StorageError as exc:
            envelope: ResponseEnvelope[T] = ResponseEnvelope.failure(exc)
        except OSError as exc:
            envelope = ResponseEnvelope.failure(
                LocalIOError(f"Local file operation failed: {exc}")
            )
        else:
            envelope = ResponseEnvelope.success(data)
        self._record(operation, envelope, time.perf_counter() - started, context)
        return envelope

    def _record(
        self,
        operation: str,
        envelope: ResponseEnvelope,
        elapsed: float,
        context: dict[str, object],
    ) -> None:
        if self._config.enable_metrics:
            record_operation(operation, envelope.status, elapsed)

        fields: dict[str, object] = {
            "operation": operation,
            "status": envelope.status,
            "elapsed_ms": round(elapsed * 1000, 2),
            **context,
        }
        if envelope.ok:
            logger.info(
                "storage_operation operation=%s status=%s",
                operation,
                envelope.status,
                extra={"extra": fields},
            )
            return

        error = envelope.error
        if error is not None:
            fields.update(
                {"category": error.category.value, "code": error.code}
            )
        logger.log(
            logging.WARNING if envelope.status < 500 else logging.ERROR,
            "storage_operation_failed operation=%s status=%s detail=%s",
            operation,
            envelope.status,
            envelope.message,
            extra={"extra": fields},
        )
