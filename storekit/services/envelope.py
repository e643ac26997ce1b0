"""Uniform result envelope returned by every public client operation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

from storekit.infra.storage.errors import FaultCategory, StorageError

T = TypeVar("T")

SUCCESS_STATUS = 200
SUCCESS_MESSAGE = "Success"


@dataclass(frozen=True, slots=True)
class ErrorDetail:
    """Structured failure description carried next to the envelope status."""

    category: FaultCategory
    code: str
    message: str
    http_status: int | None = None

    @classmethod
    def from_error(cls, exc: StorageError) -> "ErrorDetail":
        return cls(
            category=exc.category,
            code=exc.code,
            message=exc.message,
            http_status=exc.http_status,
        )


@dataclass(frozen=True)
class ResponseEnvelope(Generic[T]):
    """``{status, message, data}`` plus the structured ``error`` on failure.

    The status of a failed envelope is derived from the fault that caused it,
    so client, server and transport failures stay distinguishable.
    """

    status: int
    message: str
    data: T | None = None
    error: ErrorDetail | None = None

    @property
    def ok(self) -> bool:
        return self.status == SUCCESS_STATUS and self.error is None

    @classmethod
    def success(cls, data: T | None = None) -> "ResponseEnvelope[T]":
        return cls(status=SUCCESS_STATUS, message=SUCCESS_MESSAGE, data=data)

    @classmethod
    def failure(cls, exc: StorageError) -> "ResponseEnvelope[T]":
        return cls(
            status=exc.status,
            message=str(exc),
            error=ErrorDetail.from_error(exc),
        )
