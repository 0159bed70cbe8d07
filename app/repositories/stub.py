from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial

from app.domain.contracts import Transaction
from app.domain.errors import DomainInvariantError, SavedResponseMissingError, StorageError
from app.domain.idempotency import IdempotencyKey
from app.domain.ids import new_newsletter_issue_id
from app.domain.models import (
    Claim,
    DeliveryQueueItem,
    DequeuedTask,
    NewsletterIssue,
    Processing,
    Replay,
    StoredResponse,
    SubscriptionStatus,
)
from app.lib.responses import decode_headers, encode_headers


@dataclass
class _IdempotencyRow:
    user_id: str
    idempotency_key: str
    response_status_code: int | None = None
    response_headers: bytes | None = None
    response_body: bytes | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class InMemoryTransaction:
    """Buffers writes until commit and holds row locks until resolved."""

    pending_writes: list[Callable[[], None]] = field(default_factory=list)
    releases: list[Callable[[], None]] = field(default_factory=list)
    active: bool = True

    @property
    def is_active(self) -> bool:
        return self.active

    def stage(self, write: Callable[[], None]) -> None:
        if not self.active:
            raise DomainInvariantError("transaction is already resolved")
        self.pending_writes.append(write)

    def hold(self, release: Callable[[], None]) -> None:
        self.releases.append(release)

    async def commit(self) -> None:
        if not self.active:
            raise DomainInvariantError("transaction is already resolved")
        try:
            for write in self.pending_writes:
                write()
        finally:
            self._finish()

    async def rollback(self) -> None:
        if not self.active:
            return
        self._finish()

    def _finish(self) -> None:
        self.active = False
        self.pending_writes.clear()
        for release in reversed(self.releases):
            release()
        self.releases.clear()


@dataclass
class InMemoryNewsletterRepository:
    """Non-network repository mirroring the Postgres locking behavior.

    A per-(user, key) lock stands in for the unique index wait, and a set of
    locked queue rows stands in for FOR UPDATE SKIP LOCKED.
    """

    subscribers: dict[str, SubscriptionStatus] = field(default_factory=dict)
    idempotency: dict[tuple[str, str], _IdempotencyRow] = field(default_factory=dict)
    issues: dict[str, NewsletterIssue] = field(default_factory=dict)
    queue: list[DeliveryQueueItem] = field(default_factory=list)
    claim_locks: dict[tuple[str, str], asyncio.Lock] = field(default_factory=dict)
    claim_holders: dict[tuple[str, str], int] = field(default_factory=dict)
    in_flight: dict[tuple[str, str], _IdempotencyRow] = field(default_factory=dict)
    locked_items: set[DeliveryQueueItem] = field(default_factory=set)

    async def add_subscriber(
        self,
        *,
        email: str,
        name: str = "",
        status: SubscriptionStatus = SubscriptionStatus.CONFIRMED,
    ) -> None:
        del name
        self.subscribers[email] = status

    async def confirmed_recipients(self, *, transaction: Transaction | None = None) -> list[str]:
        if transaction is not None:
            _require_in_memory(transaction)
        return [email for email, status in self.subscribers.items() if status == SubscriptionStatus.CONFIRMED]

    async def claim_or_replay(self, *, key: IdempotencyKey, user_id: str) -> Claim:
        record_key = (user_id, key.value)
        lock = self.claim_locks.setdefault(record_key, asyncio.Lock())
        self.claim_holders[record_key] = self.claim_holders.get(record_key, 0) + 1
        try:
            # Blocks while another claimant's transaction for the same key is open.
            await lock.acquire()
        except BaseException:
            self._forget_claim_lock(record_key)
            raise

        existing = self.idempotency.get(record_key)
        if existing is not None:
            self._release_claim_lock(record_key)
            return Replay(response=_saved_response(existing))

        row = _IdempotencyRow(user_id=user_id, idempotency_key=key.value)
        transaction = InMemoryTransaction()
        self.in_flight[record_key] = row
        transaction.stage(partial(self.idempotency.__setitem__, record_key, row))
        transaction.hold(partial(self._release_claim_lock, record_key))
        transaction.hold(partial(self.in_flight.pop, record_key, None))
        return Processing(transaction=transaction, key=key, user_id=user_id)

    async def commit_response(
        self,
        transaction: Transaction,
        *,
        key: IdempotencyKey,
        user_id: str,
        response: StoredResponse,
    ) -> StoredResponse:
        tx = _require_in_memory(transaction)
        row = self.in_flight.get((user_id, key.value))
        if row is None:
            await tx.rollback()
            raise DomainInvariantError(
                "no in-flight idempotency claim to complete",
                context={"user_id": user_id, "idempotency_key": key.value},
            )

        row.response_status_code = response.status_code
        row.response_headers = encode_headers(response.headers)
        row.response_body = bytes(response.body)
        try:
            await tx.commit()
        except Exception as exc:
            await tx.rollback()
            raise StorageError("failed to commit idempotent response") from exc
        return _saved_response(row)

    async def publish_issue(
        self,
        *,
        title: str,
        text_content: str,
        html_content: str,
        recipients: Sequence[str],
        transaction: Transaction | None = None,
    ) -> str:
        owns_transaction = transaction is None
        tx = InMemoryTransaction() if transaction is None else _require_in_memory(transaction)

        issue = NewsletterIssue(
            newsletter_issue_id=new_newsletter_issue_id(),
            title=title,
            text_content=text_content,
            html_content=html_content,
            published_at=datetime.now(tz=UTC),
        )
        items = [
            DeliveryQueueItem(newsletter_issue_id=issue.newsletter_issue_id, subscriber_email=email)
            for email in dict.fromkeys(recipients)
        ]

        def _write() -> None:
            self.issues[issue.newsletter_issue_id] = issue
            self.queue.extend(items)

        tx.stage(_write)
        if owns_transaction:
            await tx.commit()
        return issue.newsletter_issue_id

    async def dequeue(self) -> DequeuedTask | None:
        for item in self.queue:
            if item in self.locked_items:
                continue
            self.locked_items.add(item)
            transaction = InMemoryTransaction()
            transaction.hold(partial(self.locked_items.discard, item))
            return DequeuedTask(transaction=transaction, item=item)
        return None

    async def get_issue(self, *, task: DequeuedTask) -> NewsletterIssue:
        issue = self.issues.get(task.item.newsletter_issue_id)
        if issue is None:
            raise DomainInvariantError(
                "queued delivery references a missing newsletter issue",
                context={"newsletter_issue_id": task.item.newsletter_issue_id},
            )
        return issue

    async def delete_task(self, *, task: DequeuedTask) -> None:
        tx = _require_in_memory(task.transaction)
        tx.stage(partial(self._remove_item, task.item))
        await tx.commit()

    async def count_pending_deliveries(self) -> int:
        return len(self.queue)

    def _remove_item(self, item: DeliveryQueueItem) -> None:
        if item in self.queue:
            self.queue.remove(item)

    def _release_claim_lock(self, record_key: tuple[str, str]) -> None:
        self.claim_locks[record_key].release()
        self._forget_claim_lock(record_key)

    def _forget_claim_lock(self, record_key: tuple[str, str]) -> None:
        # Counts holders and waiters; the lock is dropped once neither remains.
        remaining = self.claim_holders[record_key] - 1
        if remaining:
            self.claim_holders[record_key] = remaining
            return
        del self.claim_holders[record_key]
        del self.claim_locks[record_key]


def _require_in_memory(transaction: Transaction) -> InMemoryTransaction:
    if not isinstance(transaction, InMemoryTransaction):
        raise DomainInvariantError("transaction was not opened by the in-memory repository")
    if not transaction.is_active:
        raise DomainInvariantError("transaction is already resolved")
    return transaction


def _saved_response(row: _IdempotencyRow) -> StoredResponse:
    if row.response_status_code is None or row.response_headers is None or row.response_body is None:
        raise SavedResponseMissingError(
            "idempotency record has no saved response",
            context={"user_id": row.user_id, "idempotency_key": row.idempotency_key},
        )
    return StoredResponse(
        status_code=row.response_status_code,
        headers=decode_headers(row.response_headers),
        body=row.response_body,
    )
