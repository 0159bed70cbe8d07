from __future__ import annotations

from dataclasses import dataclass

from pydantic import EmailStr, TypeAdapter, ValidationError

from app.domain.errors import InvalidRecipientAddressError

_EMAIL_ADAPTER: TypeAdapter[str] = TypeAdapter(EmailStr)


@dataclass(frozen=True)
class SubscriberEmail:
    value: str

    @classmethod
    def parse(cls, raw: str) -> SubscriberEmail:
        try:
            parsed = _EMAIL_ADAPTER.validate_python(raw)
        except ValidationError as exc:
            raise InvalidRecipientAddressError(
                f"{raw!r} is not a valid subscriber email",
                context={"subscriber_email": raw},
            ) from exc
        return cls(value=parsed)

    def __str__(self) -> str:
        return self.value
