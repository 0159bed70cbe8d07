from __future__ import annotations

from dataclasses import dataclass

from app.domain.contracts import IdempotencyStore, IssueOutbox, RecipientProvider


@dataclass(frozen=True)
class ApiDeps:
    idempotency: IdempotencyStore
    outbox: IssueOutbox
    recipients: RecipientProvider
