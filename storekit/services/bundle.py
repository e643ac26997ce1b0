from __future__ import annotations

from dataclasses import dataclass, field

from storekit.common.config import ClientConfig, Credentials, Settings, get_settings
from storekit.infra.storage.client import StorageTransport
from storekit.infra.storage.s3_client import S3Transport

from .bucket_client import BucketClient
from .chunked_upload import ChunkedUploadCoordinator
from .service_client import ServiceClient


@dataclass
class ServiceBundle:
    """Lazily constructs storage clients sharing one transport."""

    transport: StorageTransport
    config: ClientConfig
    credentials: Credentials = field(repr=False)
    _service: ServiceClient | None = field(default=None, init=False, repr=False)
    _uploads: ChunkedUploadCoordinator | None = field(
        default=None, init=False, repr=False
    )

    def service(self) -> ServiceClient:
        if self._service is None:
            self._service = ServiceClient(
                self.transport,
                config=self.config,
                credentials=self.credentials,
                uploads=self.uploads(),
            )
        return self._service

    def uploads(self) -> ChunkedUploadCoordinator:
        if self._uploads is None:
            self._uploads = ChunkedUploadCoordinator(
                self.transport, config=self.config, credentials=self.credentials
            )
        return self._uploads

    def bucket(self, name: str) -> BucketClient:
        return self.service().bucket(name)

    def close(self) -> None:
        if self._uploads is not None:
            self._uploads.close()


def get_service_bundle(
    settings: Settings | None = None,
    *,
    transport: StorageTransport | None = None,
) -> ServiceBundle:
    """Build clients from settings, using the S3 transport unless one is given.

    Raises:
        ConfigError: If the settings do not form a valid configuration.
    """
    config, credentials = (settings or get_settings()).to_client_config()
    if transport is None:
        transport = S3Transport(config=config, credentials=credentials)
    return ServiceBundle(transport=transport, config=config, credentials=credentials)
