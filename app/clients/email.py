from __future__ import annotations

from dataclasses import dataclass

import httpx

from app.domain.errors import TransportError
from app.domain.subscriber_email import SubscriberEmail

AUTHORIZATION_HEADER = "X-Postmark-Server-Token"


@dataclass(frozen=True)
class HttpEmailClient:
    """Postmark-style email API client: POST {base_url}/email with a JSON payload."""

    base_url: str
    sender: SubscriberEmail
    authorization_token: str
    timeout_seconds: float = 10.0
    transport: httpx.AsyncBaseTransport | None = None

    async def send_email(
        self,
        *,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        url = f"{self.base_url.rstrip('/')}/email"
        payload = {
            "From": self.sender.value,
            "To": recipient.value,
            "Subject": subject,
            "HtmlBody": html_content,
            "TextBody": text_content,
        }
        headers = {AUTHORIZATION_HEADER: self.authorization_token}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                resp = await client.post(url, headers=headers, json=payload)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"email API responded with {exc.response.status_code}",
                context={"subscriber_email": recipient.value, "status_code": exc.response.status_code},
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(
                "email API request failed",
                context={"subscriber_email": recipient.value},
            ) from exc
