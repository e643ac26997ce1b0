"""Bucket and object naming rules.

Externally visible bucket identifiers always take the form
``<logical-name>-<account-id>``; callers only ever supply the logical name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from storekit.infra.storage.errors import ClientFault

MIN_BUCKET_NAME_LENGTH = 3
MAX_BUCKET_NAME_LENGTH = 63
MAX_OBJECT_KEY_BYTES = 1024

_BUCKET_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$")


class InvalidBucketName(ClientFault):
    default_code = "InvalidBucketName"


class InvalidObjectKey(ClientFault):
    default_code = "InvalidObjectKey"


def bucket_identifier(name: str, account_id: str) -> str:
    """Return ``name-account_id``, leaving an already suffixed name untouched."""
    name = (name or "").strip()
    account_id = (account_id or "").strip()
    if not name:
        raise InvalidBucketName("bucket name is required")
    if not account_id:
        raise InvalidBucketName("account id is required to derive a bucket name")
    suffix = f"-{account_id}"
    if name.endswith(suffix) and len(name) > len(suffix):
        return name
    return f"{name}{suffix}"


def validate_bucket_identifier(identifier: str) -> str:
    if not MIN_BUCKET_NAME_LENGTH <= len(identifier) <= MAX_BUCKET_NAME_LENGTH:
        raise InvalidBucketName(
            f"bucket identifier must be {MIN_BUCKET_NAME_LENGTH}-"
            f"{MAX_BUCKET_NAME_LENGTH} characters: {identifier!r}"
        )
    if not _BUCKET_NAME_PATTERN.match(identifier) or ".." in identifier:
        raise InvalidBucketName(
            "bucket identifier may only contain lowercase letters, digits, "
            f"'.' and '-', and must start and end alphanumeric: {identifier!r}"
        )
    return identifier


def validate_object_key(key: str) -> str:
    if not key:
        raise InvalidObjectKey("object key must not be empty")
    if len(key.encode("utf-8")) > MAX_OBJECT_KEY_BYTES:
        raise InvalidObjectKey(
            f"object key exceeds {MAX_OBJECT_KEY_BYTES} bytes when UTF-8 encoded"
        )
    return key


@dataclass(frozen=True, slots=True)
class BucketRef:
    """A logical bucket name scoped to one account."""

    name: str
    account_id: str

    def __post_init__(self) -> None:
        validate_bucket_identifier(self.identifier)

    @property
    def identifier(self) -> str:
        return bucket_identifier(self.name, self.account_id)
