from __future__ import annotations

from dataclasses import dataclass, field

from app.domain.errors import TransportError
from app.domain.subscriber_email import SubscriberEmail


@dataclass(frozen=True)
class SentEmail:
    recipient: str
    subject: str
    html_content: str
    text_content: str


@dataclass
class StubEmailClient:
    """Records sends instead of calling an email API."""

    sent: list[SentEmail] = field(default_factory=list)
    failing_recipients: set[str] = field(default_factory=set)
    attempts: int = 0

    async def send_email(
        self,
        *,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        self.attempts += 1
        if recipient.value in self.failing_recipients:
            raise TransportError(
                "stub transport rejected the recipient",
                context={"subscriber_email": recipient.value},
            )
        self.sent.append(
            SentEmail(
                recipient=recipient.value,
                subject=subject,
                html_content=html_content,
                text_content=text_content,
            )
        )
