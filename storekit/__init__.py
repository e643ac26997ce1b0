"""Minimal object storage client: buckets, objects and chunked uploads."""

from storekit.common.config import (
    ClientConfig,
    ConfigError,
    Credentials,
    Settings,
    build_client_config,
    get_settings,
)
from storekit.common.logging import setup_logging
from storekit.domain.naming import BucketRef
from storekit.domain.progress import ProgressEvent, ProgressObserver, callback_observer
from storekit.services import (
    BucketClient,
    ChunkedUploadCoordinator,
    ResponseEnvelope,
    ServiceBundle,
    ServiceClient,
    get_service_bundle,
)

__all__ = [
    "BucketClient",
    "BucketRef",
    "ChunkedUploadCoordinator",
    "ClientConfig",
    "ConfigError",
    "Credentials",
    "ProgressEvent",
    "ProgressObserver",
    "ResponseEnvelope",
    "ServiceBundle",
    "ServiceClient",
    "Settings",
    "build_client_config",
    "callback_observer",
    "get_service_bundle",
    "setup_logging",
]
