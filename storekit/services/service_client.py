"""Account-level bucket operations."""

from __future__ import annotations

from storekit.common.config import ClientConfig, Credentials
from storekit.domain.naming import BucketRef
from storekit.infra.storage.client import (
    BucketListing,
    BucketMetadata,
    StorageTransport,
)
from storekit.services.base import BaseService
from storekit.services.bucket_client import BucketClient
from storekit.services.chunked_upload import ChunkedUploadCoordinator
from storekit.services.envelope import ResponseEnvelope

DEFAULT_SIGNING_VALIDITY_SECONDS = 600


class ServiceClient(BaseService):
    """Creates and lists the buckets owned by one account."""

    def __init__(
        self,
        transport: StorageTransport,
        *,
        config: ClientConfig,
        credentials: Credentials,
        uploads: ChunkedUploadCoordinator | None = None,
    ) -> None:
        super().__init__(transport, config=config, credentials=credentials)
        self._uploads = uploads

    def create_bucket(
        self,
        name: str,
        *,
        signing_validity_seconds: int = DEFAULT_SIGNING_VALIDITY_SECONDS,
    ) -> ResponseEnvelope[BucketMetadata]:
        """Create the bucket ``<name>-<account-id>`` in the configured region."""

        def action() -> BucketMetadata:
            ref = BucketRef(name=name, account_id=self._config.account_id)
            return self._transport.create_bucket(
                bucket=ref.identifier,
                region=self._config.region,
                window=self._window(signing_validity_seconds),
            )

        return self._execute("create_bucket", action, bucket=name)

    def list_buckets(
        self, signing_validity_seconds: int = DEFAULT_SIGNING_VALIDITY_SECONDS
    ) -> ResponseEnvelope[BucketListing]:
        """List every bucket owned by the account in a single response."""
        return self._execute(
            "list_buckets",
            lambda: self._transport.list_buckets(
                window=self._window(signing_validity_seconds)
            ),
        )

    def bucket(self, name: str) -> BucketClient:
        """Return the object-level client for the logical bucket ``name``.

        Raises:
            InvalidBucketName: If the derived identifier breaks naming rules.
        """
        return BucketClient(
            self._transport,
            bucket=BucketRef(name=name, account_id=self._config.account_id),
            config=self._config,
            credentials=self._credentials,
            uploads=self._uploads,
        )
