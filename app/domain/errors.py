from __future__ import annotations

from collections.abc import Mapping


class DomainError(Exception):
    code = "internal_error"

    def __init__(self, message: str, *, context: Mapping[str, object] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, object] = dict(context or {})


class DomainValidationError(DomainError):
    code = "validation_error"


class DomainInvariantError(DomainError):
    pass


class StorageError(DomainError):
    code = "storage_unavailable"


class TransportError(DomainError):
    code = "delivery_transport_failed"


class InvalidIdempotencyKeyError(DomainValidationError):
    code = "invalid_idempotency_key"


class InvalidRecipientAddressError(DomainValidationError):
    code = "invalid_recipient_address"


class SavedResponseMissingError(DomainInvariantError):
    code = "saved_response_missing"


def format_error_chain(exc: BaseException) -> str:
    """Render an exception and its explicit causes, outermost first."""
    lines = [f"{exc}\n"]
    current = exc.__cause__
    while current is not None:
        lines.append(f"Caused by:\n\t{current}\n")
        current = current.__cause__
    return "\n".join(lines)
