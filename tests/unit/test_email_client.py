import asyncio
import json

import httpx
import pytest

from app.clients.email import AUTHORIZATION_HEADER, HttpEmailClient
from app.domain.errors import TransportError
from app.domain.subscriber_email import SubscriberEmail


def _client(handler) -> HttpEmailClient:
    return HttpEmailClient(
        base_url="https://email.example.com/",
        sender=SubscriberEmail.parse("newsletter@example.com"),
        authorization_token="token-1",
        timeout_seconds=1.0,
        transport=httpx.MockTransport(handler),
    )


async def _send(client: HttpEmailClient) -> None:
    await client.send_email(
        recipient=SubscriberEmail.parse("ursula@example.com"),
        subject="Issue #1",
        html_content="<p>html</p>",
        text_content="text",
    )


@pytest.mark.unit
def test_send_email_posts_expected_payload() -> None:
    captured: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={})

    asyncio.run(_send(_client(_handler)))

    assert len(captured) == 1
    request = captured[0]
    assert request.method == "POST"
    assert str(request.url) == "https://email.example.com/email"
    assert request.headers[AUTHORIZATION_HEADER] == "token-1"
    assert json.loads(request.content) == {
        "From": "newsletter@example.com",
        "To": "ursula@example.com",
        "Subject": "Issue #1",
        "HtmlBody": "<p>html</p>",
        "TextBody": "text",
    }


@pytest.mark.unit
def test_non_success_status_becomes_transport_error() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        del request
        return httpx.Response(500)

    with pytest.raises(TransportError) as exc_info:
        asyncio.run(_send(_client(_handler)))

    assert exc_info.value.context["status_code"] == 500
    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)


@pytest.mark.unit
def test_timeout_becomes_transport_error() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(TransportError, match="email API request failed"):
        asyncio.run(_send(_client(_handler)))
