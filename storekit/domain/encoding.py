"""Self-describing encoded payloads.

Payloads follow the data URI convention
``<scheme>:<content-type>;<encoding>,<data>``. The content type is optional and
defaults to ``application/octet-stream``; ``base64`` is the only named
encoding, anything else is read as percent-encoded bytes.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from urllib.parse import unquote_to_bytes

from storekit.infra.storage.errors import ClientFault

DATA_URI_SCHEME = "data"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

_MEDIA_TYPE_PATTERN = re.compile(r"^[\w.+-]+/[\w.+-]+$")


class InvalidEncoding(ClientFault):
    """Raised when an encoded payload cannot be split into metadata and data."""

    default_code = "InvalidEncoding"


def _content_type(meta: str) -> str:
    """Return the content type with its parameters kept verbatim."""
    content_type = meta.strip()
    media_type = content_type.partition(";")[0].strip()
    if not media_type or "=" in media_type:
        if content_type and not content_type.startswith(";"):
            content_type = ";" + content_type
        return DEFAULT_CONTENT_TYPE + content_type
    if not _MEDIA_TYPE_PATTERN.match(media_type):
        raise InvalidEncoding(f"invalid content type: {media_type!r}")
    return content_type


@dataclass(frozen=True, slots=True)
class DecodedPayload:
    content_type: str
    data: bytes


def decode_data_uri(value: str) -> DecodedPayload:
    if not isinstance(value, str) or "," not in value:
        raise InvalidEncoding("payload must look like data:<type>;base64,<data>")

    header, _, payload = value.partition(",")
    scheme, separator, meta = header.partition(":")
    if not separator or scheme.strip().lower() != DATA_URI_SCHEME:
        raise InvalidEncoding(f"unsupported payload scheme: {scheme.strip()!r}")

    head, _, last = meta.rpartition(";")
    is_base64 = last.strip().lower() == "base64"
    if is_base64:
        meta = head
    content_type = _content_type(meta)

    if is_base64:
        try:
            data = base64.b64decode("".join(payload.split()), validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidEncoding(f"payload is not valid base64: {exc}") from exc
    else:
        data = unquote_to_bytes(payload)

    return DecodedPayload(content_type=content_type, data=data)


def encode_data_uri(data: bytes, content_type: str | None = None) -> str:
    media_type = _content_type(content_type or "")
    encoded = base64.b64encode(data).decode("ascii")
    return f"{DATA_URI_SCHEME}:{media_type};base64,{encoded}"
