"""Fault taxonomy for object storage operations.

Every failure raised by a transport or by the service layer is a
``StorageError`` carrying a fault category, a provider (or local) error code,
and the envelope status derived from both.
"""

from __future__ import annotations

from enum import Enum


class FaultCategory(str, Enum):
    """Which side of the wire a failure originated on."""

    CLIENT = "client"
    SERVER = "server"
    TRANSPORT = "transport"


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""

    category: FaultCategory = FaultCategory.CLIENT
    default_code: str = "StorageError"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.http_status = http_status

    @property
    def status(self) -> int:
        return 500

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class ClientFault(StorageError):
    """Malformed request, local validation, or auth/signing failure."""

    category = FaultCategory.CLIENT
    default_code = "ClientError"

    @property
    def status(self) -> int:
        return 400


class ServerFault(StorageError):
    """Provider-side rejection such as quota, not-found or conflict."""

    category = FaultCategory.SERVER
    default_code = "ServerError"

    @property
    def status(self) -> int:
        if self.http_status is not None and self.http_status >= 400:
            return self.http_status
        return 500


class TransportFault(StorageError):
    """Network failure or timeout talking to the provider."""

    category = FaultCategory.TRANSPORT
    default_code = "TransportError"

    @property
    def status(self) -> int:
        return 503
