from __future__ import annotations

from pydantic import BaseModel, Field

# v1 storage contract for cached response headers.
# The column is opaque bytes; this model defines what those bytes hold.


class StoredHeader(BaseModel):
    # Header name as sent on the wire (lower-case for ASGI responses).
    name: str = Field(min_length=1)
    # Raw header value, base64 so non-UTF-8 bytes survive JSON.
    value_b64: str


class StoredHeaderCollection(BaseModel):
    # Order matters: repeated headers (e.g. set-cookie) are replayed in sequence.
    items: list[StoredHeader]
    schema_version: str = Field(default="headers:v1")
