from __future__ import annotations

from dataclasses import dataclass

from app.domain.contracts import DeliveryQueue, EmailClient


@dataclass(frozen=True)
class WorkerDeps:
    queue: DeliveryQueue
    email_client: EmailClient
