from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

from storekit.infra.storage.client import SigningWindow
from storekit.infra.storage.errors import ClientFault

ENV_FILE = Path(".env")

DEFAULT_CONNECT_TIMEOUT = 60.0
DEFAULT_READ_TIMEOUT = 40.0
DEFAULT_CREDENTIAL_VALIDITY_SECONDS = 600
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_PART_SIZE_BYTES = 8 * 1024 * 1024
DEFAULT_PART_RETRIES = 2
MAX_PART_RETRIES = 10
ADDRESSING_STYLES: tuple[str, ...] = ("auto", "path", "virtual")


class ConfigError(ValueError):
    """Raised when a client configuration cannot be built."""


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _as_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Immutable connection settings shared by every client."""

    account_id: str
    region: str
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    use_tls: bool = True
    endpoint_url: str | None = None
    addressing_style: str = "virtual"
    debug_log: bool = False
    enable_metrics: bool = True
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    part_size_bytes: int = DEFAULT_PART_SIZE_BYTES
    part_retries: int = DEFAULT_PART_RETRIES


@dataclass(frozen=True, slots=True)
class Credentials:
    """Access key pair; the secret never appears in ``repr`` or logs."""

    access_key: str
    secret_key: str = field(repr=False)
    validity_seconds: int = DEFAULT_CREDENTIAL_VALIDITY_SECONDS

    def signing_window(
        self, validity_seconds: int | None = None, *, now: float | None = None
    ) -> SigningWindow:
        duration = self.validity_seconds if validity_seconds is None else validity_seconds
        if duration <= 0:
            raise ClientFault(
                "signing validity must be positive", code="InvalidArgument"
            )
        issued_at = int(time.time() if now is None else now)
        return SigningWindow(issued_at=issued_at, duration_seconds=int(duration))


def build_client_config(
    *,
    account_id: str,
    region: str,
    access_key: str,
    secret_key: str,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    read_timeout: float = DEFAULT_READ_TIMEOUT,
    use_tls: bool = True,
    credential_validity_seconds: int = DEFAULT_CREDENTIAL_VALIDITY_SECONDS,
    endpoint_url: str | None = None,
    addressing_style: str = "virtual",
    debug_log: bool = False,
    enable_metrics: bool = True,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    part_size_bytes: int = DEFAULT_PART_SIZE_BYTES,
    part_retries: int = DEFAULT_PART_RETRIES,
) -> tuple[ClientConfig, Credentials]:
    """Validate inputs and build the immutable config and credential pair.

    No network activity happens here.

    Raises:
        ConfigError: If any value is missing or out of range.
    """
    account_id = (account_id or "").strip()
    region = (region or "").strip()
    if not account_id:
        raise ConfigError("account_id is required")
    if not region:
        raise ConfigError("region is required")
    if not access_key or not secret_key:
        raise ConfigError("access_key and secret_key are required")
    if connect_timeout <= 0:
        raise ConfigError("connect_timeout must be positive")
    if read_timeout <= 0:
        raise ConfigError("read_timeout must be positive")
    if credential_validity_seconds <= 0:
        raise ConfigError("credential_validity_seconds must be positive")
    if max_concurrency < 1:
        raise ConfigError("max_concurrency must be at least 1")
    if part_size_bytes <= 0:
        raise ConfigError("part_size_bytes must be positive")
    if not 0 <= part_retries <= MAX_PART_RETRIES:
        raise ConfigError(f"part_retries must be between 0 and {MAX_PART_RETRIES}")

    style = (addressing_style or "virtual").strip().lower()
    if style not in ADDRESSING_STYLES:
        raise ConfigError(
            f"addressing_style must be one of {', '.join(ADDRESSING_STYLES)}"
        )

    config = ClientConfig(
        account_id=account_id,
        region=region,
        connect_timeout=float(connect_timeout),
        read_timeout=float(read_timeout),
        use_tls=bool(use_tls),
        endpoint_url=endpoint_url or None,
        addressing_style=style,
        debug_log=bool(debug_log),
        enable_metrics=bool(enable_metrics),
        max_concurrency=int(max_concurrency),
        part_size_bytes=int(part_size_bytes),
        part_retries=int(part_retries),
    )
    credentials = Credentials(
        access_key=access_key,
        secret_key=secret_key,
        validity_seconds=int(credential_validity_seconds),
    )
    return config, credentials


@dataclass
class Settings:
    STORAGE_ACCOUNT_ID: str | None = None
    STORAGE_REGION: str | None = None
    STORAGE_ACCESS_KEY_ID: str | None = None
    STORAGE_SECRET_ACCESS_KEY: str | None = field(default=None, repr=False)
    STORAGE_ENDPOINT_URL: str | None = None
    STORAGE_USE_TLS: bool = True
    STORAGE_ADDRESSING_STYLE: str = "virtual"
    STORAGE_CONNECT_TIMEOUT: float = DEFAULT_CONNECT_TIMEOUT
    STORAGE_READ_TIMEOUT: float = DEFAULT_READ_TIMEOUT
    STORAGE_CREDENTIAL_VALIDITY_SECONDS: int = DEFAULT_CREDENTIAL_VALIDITY_SECONDS
    STORAGE_MAX_CONCURRENCY: int = DEFAULT_MAX_CONCURRENCY
    STORAGE_PART_SIZE_BYTES: int = DEFAULT_PART_SIZE_BYTES
    STORAGE_PART_RETRIES: int = DEFAULT_PART_RETRIES
    STORAGE_DEBUG_LOG: bool = False
    STORAGE_ENABLE_METRICS: bool = True

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            STORAGE_ACCOUNT_ID=os.environ.get("STORAGE_ACCOUNT_ID"),
            STORAGE_REGION=os.environ.get("STORAGE_REGION"),
            STORAGE_ACCESS_KEY_ID=os.environ.get("STORAGE_ACCESS_KEY_ID"),
            STORAGE_SECRET_ACCESS_KEY=os.environ.get("STORAGE_SECRET_ACCESS_KEY"),
            STORAGE_ENDPOINT_URL=os.environ.get("STORAGE_ENDPOINT_URL") or None,
            STORAGE_USE_TLS=_as_bool(
                os.environ.get("STORAGE_USE_TLS"), cls.STORAGE_USE_TLS
            ),
            STORAGE_ADDRESSING_STYLE=os.environ.get(
                "STORAGE_ADDRESSING_STYLE", cls.STORAGE_ADDRESSING_STYLE
            ),
            STORAGE_CONNECT_TIMEOUT=_as_float(
                "STORAGE_CONNECT_TIMEOUT", cls.STORAGE_CONNECT_TIMEOUT
            ),
            STORAGE_READ_TIMEOUT=_as_float(
                "STORAGE_READ_TIMEOUT", cls.STORAGE_READ_TIMEOUT
            ),
            STORAGE_CREDENTIAL_VALIDITY_SECONDS=_as_int(
                "STORAGE_CREDENTIAL_VALIDITY_SECONDS",
                cls.STORAGE_CREDENTIAL_VALIDITY_SECONDS,
            ),
            STORAGE_MAX_CONCURRENCY=_as_int(
                "STORAGE_MAX_CONCURRENCY", cls.STORAGE_MAX_CONCURRENCY
            ),
            STORAGE_PART_SIZE_BYTES=_as_int(
                "STORAGE_PART_SIZE_BYTES", cls.STORAGE_PART_SIZE_BYTES
            ),
            STORAGE_PART_RETRIES=_as_int(
                "STORAGE_PART_RETRIES", cls.STORAGE_PART_RETRIES
            ),
            STORAGE_DEBUG_LOG=_as_bool(
                os.environ.get("STORAGE_DEBUG_LOG"), cls.STORAGE_DEBUG_LOG
            ),
            STORAGE_ENABLE_METRICS=_as_bool(
                os.environ.get("STORAGE_ENABLE_METRICS"), cls.STORAGE_ENABLE_METRICS
            ),
        )

    def to_client_config(self) -> tuple[ClientConfig, Credentials]:
        return build_client_config(
            account_id=self.STORAGE_ACCOUNT_ID or "",
            region=self.STORAGE_REGION or "",
            access_key=self.STORAGE_ACCESS_KEY_ID or "",
            secret_key=self.STORAGE_SECRET_ACCESS_KEY or "",
            connect_timeout=self.STORAGE_CONNECT_TIMEOUT,
            read_timeout=self.STORAGE_READ_TIMEOUT,
            use_tls=self.STORAGE_USE_TLS,
            credential_validity_seconds=self.STORAGE_CREDENTIAL_VALIDITY_SECONDS,
            endpoint_url=self.STORAGE_ENDPOINT_URL,
            addressing_style=self.STORAGE_ADDRESSING_STYLE,
            debug_log=self.STORAGE_DEBUG_LOG,
            enable_metrics=self.STORAGE_ENABLE_METRICS,
            max_concurrency=self.STORAGE_MAX_CONCURRENCY,
            part_size_bytes=self.STORAGE_PART_SIZE_BYTES,
            part_retries=self.STORAGE_PART_RETRIES,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
