from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
import importlib
from typing import Any

from app.domain.contracts import Transaction
from app.domain.errors import DomainError, DomainInvariantError, SavedResponseMissingError, StorageError
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
from app.repositories.sql_loader import load_sql

try:
    asyncpg_module = importlib.import_module("asyncpg")
except ModuleNotFoundError:  # pragma: no cover
    asyncpg_module = None  # type: ignore[assignment]


SQL_CLAIM_IDEMPOTENCY_KEY = load_sql("claim_idempotency_key.sql")
SQL_GET_SAVED_RESPONSE = load_sql("get_saved_response.sql")
SQL_SAVE_RESPONSE = load_sql("save_response.sql")
SQL_INSERT_NEWSLETTER_ISSUE = load_sql("insert_newsletter_issue.sql")
SQL_ENQUEUE_DELIVERY_TASKS = load_sql("enqueue_delivery_tasks.sql")
SQL_DEQUEUE_DELIVERY_TASK = load_sql("dequeue_delivery_task.sql")
SQL_GET_NEWSLETTER_ISSUE = load_sql("get_newsletter_issue.sql")
SQL_DELETE_DELIVERY_TASK = load_sql("delete_delivery_task.sql")
SQL_LIST_CONFIRMED_SUBSCRIBERS = load_sql("list_confirmed_subscribers.sql")
SQL_UPSERT_SUBSCRIBER = load_sql("upsert_subscriber.sql")
SQL_COUNT_PENDING_DELIVERIES = load_sql("count_pending_deliveries.sql")


@dataclass
class AsyncpgPoolManager:
    dsn: str
    min_size: int = 1
    max_size: int = 5
    pool: Any | None = None

    async def startup(self) -> None:
        if asyncpg_module is None:  # pragma: no cover
            raise RuntimeError("asyncpg is required for postgres repository mode")

        self.pool = await asyncpg_module.create_pool(
            dsn=self.dsn,
            min_size=self.min_size,
            max_size=self.max_size,
        )

    async def shutdown(self) -> None:
        if self.pool is None:
            return
        await self.pool.close()
        self.pool = None


@dataclass
class PostgresTransaction:
    """A pooled connection with an open transaction, released on resolve."""

    pool: Any
    connection: Any
    transaction: Any
    active: bool = True

    @property
    def is_active(self) -> bool:
        return self.active

    async def commit(self) -> None:
        if not self.active:
            raise DomainInvariantError("transaction is already resolved")
        self.active = False
        try:
            await self.transaction.commit()
        except Exception as exc:
            raise StorageError("failed to commit transaction") from exc
        finally:
            await self.pool.release(self.connection)

    async def rollback(self) -> None:
        if not self.active:
            return
        self.active = False
        try:
            await self.transaction.rollback()
        except Exception as exc:
            raise StorageError("failed to roll back transaction") from exc
        finally:
            await self.pool.release(self.connection)


@dataclass
class PostgresNewsletterRepository:
    pool_manager: AsyncpgPoolManager

    def _pool(self) -> Any:
        if self.pool_manager.pool is None:
            raise RuntimeError("postgres pool is not initialized")
        return self.pool_manager.pool

    async def _begin(self) -> PostgresTransaction:
        pool = self._pool()
        try:
            connection = await pool.acquire()
        except Exception as exc:
            raise StorageError("failed to acquire a database connection") from exc

        transaction = connection.transaction()
        try:
            await transaction.start()
        except Exception as exc:
            await pool.release(connection)
            raise StorageError("failed to begin transaction") from exc
        return PostgresTransaction(pool=pool, connection=connection, transaction=transaction)

    async def claim_or_replay(self, *, key: IdempotencyKey, user_id: str) -> Claim:
        tx = await self._begin()
        async with _rollback_on_error(tx, operation="claim idempotency key"):
            # Waits on the unique index while a concurrent claim for the same
            # key is uncommitted; resolves to a conflict only once it commits.
            created_at = await tx.connection.fetchval(SQL_CLAIM_IDEMPOTENCY_KEY, user_id, key.value)
            if created_at is not None:
                return Processing(transaction=tx, key=key, user_id=user_id)
            row = await tx.connection.fetchrow(SQL_GET_SAVED_RESPONSE, user_id, key.value)

        await tx.rollback()
        if row is None:
            raise DomainInvariantError(
                "idempotency conflict without a stored record",
                context={"user_id": user_id, "idempotency_key": key.value},
            )
        return Replay(response=_saved_response(row, user_id=user_id, key=key))

    async def commit_response(
        self,
        transaction: Transaction,
        *,
        key: IdempotencyKey,
        user_id: str,
        response: StoredResponse,
    ) -> StoredResponse:
        tx = _require_postgres(transaction)
        encoded_headers = encode_headers(response.headers)
        body = bytes(response.body)
        async with _rollback_on_error(tx, operation="save idempotent response"):
            updated = await tx.connection.fetchval(
                SQL_SAVE_RESPONSE,
                user_id,
                key.value,
                response.status_code,
                encoded_headers,
                body,
            )
            if updated is None:
                raise DomainInvariantError(
                    "no in-flight idempotency claim to complete",
                    context={"user_id": user_id, "idempotency_key": key.value},
                )

        await tx.commit()
        return StoredResponse(
            status_code=response.status_code,
            headers=decode_headers(encoded_headers),
            body=body,
        )

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
        tx = await self._begin() if transaction is None else _require_postgres(transaction)
        newsletter_issue_id = new_newsletter_issue_id()
        async with _rollback_on_error(tx, operation="publish newsletter issue"):
            await tx.connection.execute(
                SQL_INSERT_NEWSLETTER_ISSUE,
                newsletter_issue_id,
                title,
                text_content,
                html_content,
            )
            await tx.connection.execute(
                SQL_ENQUEUE_DELIVERY_TASKS,
                newsletter_issue_id,
                list(dict.fromkeys(recipients)),
            )

        if owns_transaction:
            await tx.commit()
        return newsletter_issue_id

    async def dequeue(self) -> DequeuedTask | None:
        tx = await self._begin()
        async with _rollback_on_error(tx, operation="dequeue delivery task"):
            row = await tx.connection.fetchrow(SQL_DEQUEUE_DELIVERY_TASK)
        if row is None:
            await tx.rollback()
            return None
        return DequeuedTask(
            transaction=tx,
            item=DeliveryQueueItem(
                newsletter_issue_id=row["newsletter_issue_id"],
                subscriber_email=row["subscriber_email"],
            ),
        )

    async def get_issue(self, *, task: DequeuedTask) -> NewsletterIssue:
        tx = _require_postgres(task.transaction)
        async with _rollback_on_error(tx, operation="load newsletter issue"):
            row = await tx.connection.fetchrow(SQL_GET_NEWSLETTER_ISSUE, task.item.newsletter_issue_id)
            if row is None:
                raise DomainInvariantError(
                    "queued delivery references a missing newsletter issue",
                    context={"newsletter_issue_id": task.item.newsletter_issue_id},
                )
        return NewsletterIssue(
            newsletter_issue_id=row["newsletter_issue_id"],
            title=row["title"],
            text_content=row["text_content"],
            html_content=row["html_content"],
            published_at=row["published_at"],
        )

    async def delete_task(self, *, task: DequeuedTask) -> None:
        tx = _require_postgres(task.transaction)
        async with _rollback_on_error(tx, operation="delete delivery task"):
            await tx.connection.execute(
                SQL_DELETE_DELIVERY_TASK,
                task.item.newsletter_issue_id,
                task.item.subscriber_email,
            )
        await tx.commit()

    async def confirmed_recipients(self, *, transaction: Transaction | None = None) -> list[str]:
        if transaction is not None:
            # Reuses the claim connection; a second acquire would wait on the
            # pool while this one is held.
            tx = _require_postgres(transaction)
            async with _rollback_on_error(tx, operation="load confirmed subscribers"):
                rows = await tx.connection.fetch(SQL_LIST_CONFIRMED_SUBSCRIBERS)
            return [row["email"] for row in rows]

        pool = self._pool()
        try:
            async with pool.acquire() as conn:
                rows = await conn.fetch(SQL_LIST_CONFIRMED_SUBSCRIBERS)
        except Exception as exc:
            raise StorageError("failed to load confirmed subscribers") from exc
        return [row["email"] for row in rows]

    async def add_subscriber(
        self,
        *,
        email: str,
        name: str = "",
        status: SubscriptionStatus = SubscriptionStatus.CONFIRMED,
    ) -> None:
        pool = self._pool()
        async with pool.acquire() as conn:
            await conn.execute(SQL_UPSERT_SUBSCRIBER, email, name, status.value)

    async def count_pending_deliveries(self) -> int:
        pool = self._pool()
        async with pool.acquire() as conn:
            count = await conn.fetchval(SQL_COUNT_PENDING_DELIVERIES)
        return int(count or 0)


@asynccontextmanager
async def _rollback_on_error(tx: PostgresTransaction, *, operation: str) -> AsyncIterator[None]:
    try:
        yield
    except BaseException as exc:
        await tx.rollback()
        if isinstance(exc, Exception) and not isinstance(exc, DomainError):
            raise StorageError(
                f"{operation} failed",
                context={"operation": operation, "sqlstate": getattr(exc, "sqlstate", None)},
            ) from exc
        raise


def _require_postgres(transaction: Transaction) -> PostgresTransaction:
    if not isinstance(transaction, PostgresTransaction):
        raise DomainInvariantError("transaction was not opened by the postgres repository")
    if not transaction.is_active:
        raise DomainInvariantError("transaction is already resolved")
    return transaction


def _saved_response(row: Any, *, user_id: str, key: IdempotencyKey) -> StoredResponse:
    status_code = row["response_status_code"]
    headers = row["response_headers"]
    body = row["response_body"]
    if status_code is None or headers is None or body is None:
        # The claim and the response are committed together, so a visible
        # record always carries a response.
        raise SavedResponseMissingError(
            "idempotency record has no saved response",
            context={"user_id": user_id, "idempotency_key": key.value},
        )
    return StoredResponse(
        status_code=int(status_code),
        headers=decode_headers(bytes(headers)),
        body=bytes(body),
    )
