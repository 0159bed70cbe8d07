from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, TypeAlias

from app.domain.idempotency import IdempotencyKey

if TYPE_CHECKING:
    from app.domain.contracts import Transaction


@dataclass(frozen=True)
class StoredResponse:
    """HTTP response as persisted for idempotent replay.

    Header values are kept as raw bytes and in their original order so a
    replay is byte-for-byte identical to the first response.
    """

    status_code: int
    headers: tuple[tuple[str, bytes], ...]
    body: bytes


@dataclass(frozen=True)
class Processing:
    """The caller owns the claim and must resolve `transaction`."""

    transaction: Transaction
    key: IdempotencyKey
    user_id: str


@dataclass(frozen=True)
class Replay:
    response: StoredResponse


Claim: TypeAlias = Processing | Replay


@dataclass(frozen=True)
class NewsletterIssue:
    newsletter_issue_id: str
    title: str
    text_content: str
    html_content: str
    published_at: datetime


@dataclass(frozen=True)
class DeliveryQueueItem:
    newsletter_issue_id: str
    subscriber_email: str


@dataclass(frozen=True)
class DequeuedTask:
    """A queue row locked by `transaction` until it commits or rolls back."""

    transaction: Transaction
    item: DeliveryQueueItem


class ExecutionOutcome(StrEnum):
    TASK_COMPLETED = "task_completed"
    EMPTY_QUEUE = "empty_queue"


class DeliveryStatus(StrEnum):
    SENT = "sent"
    SKIPPED_INVALID_ADDRESS = "skipped_invalid_address"
    SEND_FAILED = "send_failed"


class SubscriptionStatus(StrEnum):
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
