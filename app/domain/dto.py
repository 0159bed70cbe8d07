from __future__ import annotations

from dataclasses import dataclass

from app.domain.idempotency import IdempotencyKey
from app.domain.models import DeliveryQueueItem, DeliveryStatus, StoredResponse


@dataclass(frozen=True)
class PublishNewsletterCommand:
    user_id: str
    key: IdempotencyKey
    title: str
    text_content: str
    html_content: str


@dataclass(frozen=True)
class PublishNewsletterResult:
    response: StoredResponse
    replayed: bool
    newsletter_issue_id: str | None = None


@dataclass(frozen=True)
class DeliveryResult:
    item: DeliveryQueueItem
    status: DeliveryStatus
    detail: str = ""
