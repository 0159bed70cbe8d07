from __future__ import annotations

from collections.abc import Mapping
from typing import Literal

# Canonical error vocabulary for all components.
ErrorCode = Literal[
    "validation_error",
    "invalid_idempotency_key",
    "invalid_recipient_address",
    "storage_unavailable",
    "saved_response_missing",
    "delivery_transport_failed",
    "internal_error",
]

# reject: refused at the boundary (HTTP 400).
# skip: logged, the queue item is removed anyway.
# surface: propagated to the caller (HTTP 500, or worker backoff).
ErrorDisposition = Literal["reject", "skip", "surface"]

CANONICAL_ERROR_CODES: tuple[ErrorCode, ...] = (
    "validation_error",
    "invalid_idempotency_key",
    "invalid_recipient_address",
    "storage_unavailable",
    "saved_response_missing",
    "delivery_transport_failed",
    "internal_error",
)

ERROR_DISPOSITIONS: Mapping[ErrorCode, ErrorDisposition] = {
    "validation_error": "reject",
    "invalid_idempotency_key": "reject",
    "invalid_recipient_address": "skip",
    "delivery_transport_failed": "skip",
    "storage_unavailable": "surface",
    "saved_response_missing": "surface",
    "internal_error": "surface",
}

# Component-specific allowlist. If a component emits a code outside this map,
# it is normalized to internal_error by resolve_component_error().
COMPONENT_ERROR_MAP: Mapping[str, frozenset[ErrorCode]] = {
    "api": frozenset(
        {
            "validation_error",
            "invalid_idempotency_key",
            "storage_unavailable",
            "saved_response_missing",
            "internal_error",
        }
    ),
    "idempotency": frozenset(
        {
            "invalid_idempotency_key",
            "storage_unavailable",
            "saved_response_missing",
            "internal_error",
        }
    ),
    "outbox": frozenset(
        {
            "validation_error",
            "storage_unavailable",
            "internal_error",
        }
    ),
    "delivery": frozenset(
        {
            "invalid_recipient_address",
            "delivery_transport_failed",
            "storage_unavailable",
            "internal_error",
        }
    ),
}


def is_canonical_error_code(code: str) -> bool:
    return code in CANONICAL_ERROR_CODES


def classify_error(code: ErrorCode) -> ErrorDisposition:
    return ERROR_DISPOSITIONS.get(code, "surface")


def resolve_component_error(*, component: str, code: str) -> ErrorCode:
    allowed = COMPONENT_ERROR_MAP.get(component, frozenset({"internal_error"}))
    if code in allowed and is_canonical_error_code(code):
        return code  # type: ignore[return-value]
    # Keep log and response vocabulary stable even if a caller emitted an unsupported code.
    return "internal_error"
