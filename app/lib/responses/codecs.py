from __future__ import annotations

import base64
import binascii
from collections.abc import Sequence

from pydantic import ValidationError

from app.domain.errors import DomainInvariantError
from app.lib.responses.types import StoredHeader, StoredHeaderCollection

HEADERS_SCHEMA_VERSION = "headers:v1"


def encode_headers(headers: Sequence[tuple[str, bytes]]) -> bytes:
    collection = StoredHeaderCollection(
        items=[
            StoredHeader(name=name, value_b64=base64.b64encode(value).decode("ascii"))
            for name, value in headers
        ]
    )
    return collection.model_dump_json().encode("utf-8")


def decode_headers(payload: bytes) -> tuple[tuple[str, bytes], ...]:
    try:
        collection = StoredHeaderCollection.model_validate_json(payload)
        items = tuple((item.name, base64.b64decode(item.value_b64, validate=True)) for item in collection.items)
    except (ValidationError, binascii.Error) as exc:
        raise DomainInvariantError("stored headers payload is malformed") from exc
    if collection.schema_version != HEADERS_SCHEMA_VERSION:
        raise DomainInvariantError(
            "unsupported stored headers schema",
            context={"schema_version": collection.schema_version},
        )
    return items
