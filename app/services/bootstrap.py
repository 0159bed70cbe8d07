from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.api.handlers.deps import ApiDeps
from app.clients.email import HttpEmailClient
from app.clients.stub import StubEmailClient
from app.domain.contracts import EmailClient
from app.domain.subscriber_email import SubscriberEmail
from app.repositories.postgres import AsyncpgPoolManager, PostgresNewsletterRepository
from app.repositories.stub import InMemoryNewsletterRepository
from app.roles import RuntimeRole
from app.services.settings import (
    DatabaseSettings,
    EmailClientSettings,
    database_settings_from_env,
    email_client_settings_from_env,
)
from app.workers.handlers.deps import WorkerDeps
from app.workers.handlers.factory import build_process_handler
from app.workers.loop import DeliveryWorker


@dataclass
class RuntimeContainer:
    repository: InMemoryNewsletterRepository | PostgresNewsletterRepository
    email_client: EmailClient
    api_deps: ApiDeps
    worker: DeliveryWorker | None
    on_startup: Callable[[], Awaitable[None]] | None
    on_shutdown: Callable[[], Awaitable[None]] | None


def build_email_client(settings: EmailClientSettings) -> EmailClient:
    if not settings.base_url:
        return StubEmailClient()
    return HttpEmailClient(
        base_url=settings.base_url,
        sender=SubscriberEmail.parse(settings.sender),
        authorization_token=settings.authorization_token,
        timeout_seconds=settings.timeout_seconds,
    )


def build_runtime_container(
    role: RuntimeRole,
    *,
    database: DatabaseSettings | None = None,
    email: EmailClientSettings | None = None,
) -> RuntimeContainer:
    database = database or database_settings_from_env()
    email = email or email_client_settings_from_env()

    on_startup: Callable[[], Awaitable[None]] | None = None
    on_shutdown: Callable[[], Awaitable[None]] | None = None
    repository: InMemoryNewsletterRepository | PostgresNewsletterRepository
    if database.url:
        pool_manager = AsyncpgPoolManager(
            dsn=database.url,
            min_size=database.pool_min_size,
            max_size=database.pool_max_size,
        )
        repository = PostgresNewsletterRepository(pool_manager=pool_manager)
        on_startup = pool_manager.startup
        on_shutdown = pool_manager.shutdown
    else:
        repository = InMemoryNewsletterRepository()

    email_client = build_email_client(email)
    api_deps = ApiDeps(
        idempotency=repository,
        outbox=repository,
        recipients=repository,
    )

    worker: DeliveryWorker | None = None
    if role.runs_worker:
        worker_deps = WorkerDeps(queue=repository, email_client=email_client)
        worker = DeliveryWorker(
            role=role.name,
            queue=repository,
            process=build_process_handler(role.name, worker_deps),
        )

    return RuntimeContainer(
        repository=repository,
        email_client=email_client,
        api_deps=api_deps,
        worker=worker,
        on_startup=on_startup,
        on_shutdown=on_shutdown,
    )
