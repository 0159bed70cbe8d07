from __future__ import annotations

from dataclasses import dataclass

from app.domain.errors import InvalidIdempotencyKeyError

MAX_IDEMPOTENCY_KEY_LENGTH = 50


@dataclass(frozen=True)
class IdempotencyKey:
    """Client-supplied token; only meaningful together with the acting user id."""

    value: str

    @classmethod
    def parse(cls, raw: str) -> IdempotencyKey:
        if not raw:
            raise InvalidIdempotencyKeyError("The idempotency key cannot be empty")
        if len(raw) > MAX_IDEMPOTENCY_KEY_LENGTH:
            raise InvalidIdempotencyKeyError(
                f"The idempotency key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters long",
                context={"length": len(raw)},
            )
        return cls(value=raw)

    def __str__(self) -> str:
        return self.value
