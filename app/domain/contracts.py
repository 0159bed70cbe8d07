from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from app.domain.idempotency import IdempotencyKey
from app.domain.models import Claim, DequeuedTask, NewsletterIssue, StoredResponse
from app.domain.subscriber_email import SubscriberEmail

CLAIM_SQL_CONTRACT = "SELECT ... FOR UPDATE SKIP LOCKED"
IDEMPOTENCY_SQL_CONTRACT = "INSERT ... ON CONFLICT DO NOTHING"


@runtime_checkable
class Transaction(Protocol):
    """An open unit of work; exactly one of commit/rollback resolves it."""

    @property
    def is_active(self) -> bool: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


@runtime_checkable
class IdempotencyStore(Protocol):
    """Claim/replay protocol keyed by (user_id, idempotency_key).

    Concurrent claimants are arbitrated by the store's uniqueness constraint:
    a second claimant waits until the first transaction resolves, then either
    replays the committed response or obtains the claim itself.
    """

    async def claim_or_replay(self, *, key: IdempotencyKey, user_id: str) -> Claim: ...

    async def commit_response(
        self,
        transaction: Transaction,
        *,
        key: IdempotencyKey,
        user_id: str,
        response: StoredResponse,
    ) -> StoredResponse: ...


@runtime_checkable
class IssueOutbox(Protocol):
    """Persists an issue and its delivery queue rows in one transaction.

    Without a transaction the writer opens and commits its own.
    """

    async def publish_issue(
        self,
        *,
        title: str,
        text_content: str,
        html_content: str,
        recipients: Sequence[str],
        transaction: Transaction | None = None,
    ) -> str: ...


@runtime_checkable
class DeliveryQueue(Protocol):
    """Queue contract compatible with Postgres SELECT ... FOR UPDATE SKIP LOCKED."""

    async def dequeue(self) -> DequeuedTask | None: ...

    async def get_issue(self, *, task: DequeuedTask) -> NewsletterIssue: ...

    async def delete_task(self, *, task: DequeuedTask) -> None: ...


@runtime_checkable
class RecipientProvider(Protocol):
    """Confirmed subscriber addresses; read inside `transaction` when one is given."""

    async def confirmed_recipients(self, *, transaction: Transaction | None = None) -> list[str]: ...


@runtime_checkable
class EmailClient(Protocol):
    async def send_email(
        self,
        *,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None: ...
