from __future__ import annotations

import pytest

from storekit.common.config import build_client_config
from tests.services.fake_transport import FakeStorageTransport

ACCOUNT_ID = "1250000000"


@pytest.fixture()
def client_settings():
    return build_client_config(
        account_id=ACCOUNT_ID,
        region="ap-guangzhou",
        access_key="AKIDEXAMPLE",
        secret_key="secret-example",
        max_concurrency=3,
        part_size_bytes=4,
        part_retries=2,
        enable_metrics=False,
    )


@pytest.fixture()
def config(client_settings):
    return client_settings[0]


@pytest.fixture()
def credentials(client_settings):
    return client_settings[1]


@pytest.fixture()
def transport():
    return FakeStorageTransport()
