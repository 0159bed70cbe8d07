from __future__ import annotations

from contextlib import asynccontextmanager
import asyncio
from collections.abc import Awaitable, Callable
import logging

from fastapi import Depends, FastAPI, Header, HTTPException, Response

from app.api.handlers.deps import ApiDeps
from app.api.handlers.newsletters import publish_newsletter_handler
from app.api.responses import to_http_response
from app.api.schemas import (
    ErrorResponse,
    HealthResponse,
    PublishNewsletterRequest,
    PublishNewsletterResponse,
    ReadyResponse,
    WorkerMetrics,
)
from app.domain.error_taxonomy import classify_error, resolve_component_error
from app.domain.errors import DomainError, format_error_chain
from app.workers.loop import DeliveryWorker
from app.workers.runner import (
    WorkerRuntimeSettings,
    WorkerRuntimeState,
    run_worker_until_stopped,
    worker_runtime_settings_from_env,
)

INTERNAL_ERROR_DETAIL = "internal server error"


async def require_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Acting user as authenticated by the upstream session layer."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="an authenticated user is required")
    return x_user_id.strip()


def build_app(
    role: str,
    run_id: str,
    worker: DeliveryWorker | None = None,
    worker_runtime_settings: WorkerRuntimeSettings | None = None,
    api_deps: ApiDeps | None = None,
    on_startup: Callable[[], Awaitable[None]] | None = None,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    logger = logging.getLogger("runtime")
    worker_state: WorkerRuntimeState | None = None
    worker_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        nonlocal worker_task, worker_state
        del app
        stop_event: asyncio.Event | None = None

        logger.info(
            "role started",
            extra={"role": role, "service": role, "run_id": run_id},
        )

        if on_startup is not None:
            await on_startup()

        if worker is not None:
            settings = worker_runtime_settings or worker_runtime_settings_from_env()
            worker_state = WorkerRuntimeState()
            stop_event = asyncio.Event()
            worker_task = asyncio.create_task(
                run_worker_until_stopped(
                    worker=worker,
                    role=role,
                    run_id=run_id,
                    stop_event=stop_event,
                    settings=settings,
                    logger=logger,
                    state=worker_state,
                )
            )

        yield

        if stop_event is not None and worker_task is not None:
            stop_event.set()
            if worker_task.done() and worker_task.exception() is not None:
                logger.error(
                    "worker loop had stopped on an error before shutdown",
                    extra={
                        "role": role,
                        "service": role,
                        "run_id": run_id,
                        "error_chain": format_error_chain(worker_task.exception()),
                    },
                )
            else:
                await worker_task

        if on_shutdown is not None:
            await on_shutdown()

        logger.info(
            "role stopped",
            extra={"role": role, "service": role, "run_id": run_id},
        )

    app = FastAPI(title="newsletter-outbox", version="0.1.0", lifespan=lifespan)

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", role=role, mode="outbox")

    @app.get("/ready", response_model=ReadyResponse, tags=["System"])
    async def ready() -> ReadyResponse:
        worker_loop_enabled = worker is not None
        worker_loop_ready = True
        metrics = WorkerRuntimeState()
        if worker_loop_enabled:
            worker_loop_ready = (
                worker_state is not None
                and worker_state.started
                and worker_task is not None
                and not worker_task.done()
            )
            if worker_state is not None:
                metrics = worker_state

        return ReadyResponse(
            status="ready" if worker_loop_ready else "not_ready",
            role=role,
            mode="outbox",
            worker_loop_enabled=worker_loop_enabled,
            worker_loop_ready=worker_loop_ready,
            worker_metrics=WorkerMetrics(
                started=metrics.started,
                stopped=metrics.stopped,
                ticks_total=metrics.ticks_total,
                tasks_completed_total=metrics.tasks_completed_total,
                idle_ticks_total=metrics.idle_ticks_total,
                errors_total=metrics.errors_total,
            ),
        )

    @app.post(
        "/admin/newsletters",
        response_model=PublishNewsletterResponse,
        responses={
            400: {"model": ErrorResponse},
            401: {"model": ErrorResponse},
            422: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
        tags=["Newsletters"],
    )
    async def publish_newsletter(
        request: PublishNewsletterRequest,
        user_id: str = Depends(require_user_id),
    ) -> Response:
        if api_deps is None:
            raise HTTPException(status_code=503, detail="api dependencies are not available")
        try:
            result = await publish_newsletter_handler(user_id=user_id, request=request, api_deps=api_deps)
        except DomainError as exc:
            error_code = resolve_component_error(component="api", code=exc.code)
            disposition = classify_error(error_code)
            if disposition == "reject":
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            logger.error(
                "failed to publish a newsletter issue",
                extra={
                    "role": role,
                    "run_id": run_id,
                    "user_id": user_id,
                    "error_code": error_code,
                    "disposition": disposition,
                    "error_chain": format_error_chain(exc),
                },
            )
            raise HTTPException(status_code=500, detail=INTERNAL_ERROR_DETAIL) from exc
        return to_http_response(result.response)

    return app
