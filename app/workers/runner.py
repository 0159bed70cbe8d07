from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from app.domain.errors import format_error_chain
from app.domain.models import ExecutionOutcome
from app.services.settings import env_int
from app.workers.loop import DeliveryWorker


@dataclass(frozen=True)
class WorkerRuntimeSettings:
    idle_backoff_ms: int = 10000
    error_backoff_ms: int = 1000
    max_consecutive_errors: int = 30


@dataclass
class WorkerRuntimeState:
    started: bool = False
    stopped: bool = False
    ticks_total: int = 0
    tasks_completed_total: int = 0
    idle_ticks_total: int = 0
    errors_total: int = 0
    consecutive_errors: int = 0


def worker_runtime_settings_from_env() -> WorkerRuntimeSettings:
    return WorkerRuntimeSettings(
        idle_backoff_ms=env_int("WORKER_IDLE_BACKOFF_MS", 10000),
        error_backoff_ms=env_int("WORKER_ERROR_BACKOFF_MS", 1000),
        max_consecutive_errors=env_int("WORKER_MAX_CONSECUTIVE_ERRORS", 30),
    )


async def run_worker_until_stopped(
    *,
    worker: DeliveryWorker,
    role: str,
    run_id: str,
    stop_event: asyncio.Event,
    settings: WorkerRuntimeSettings,
    logger: logging.Logger,
    state: WorkerRuntimeState | None = None,
) -> None:
    """Drive the delivery worker until `stop_event` is set.

    Raises the last error once `max_consecutive_errors` iterations in a row
    have failed.
    """
    state = state if state is not None else WorkerRuntimeState()
    state.started = True
    log_extra = {"role": role, "service": role, "run_id": run_id}

    logger.info("worker loop started", extra=log_extra)

    try:
        while not stop_event.is_set():
            try:
                outcome = await worker.try_execute_one_task()
            except Exception as exc:
                state.ticks_total += 1
                state.errors_total += 1
                state.consecutive_errors += 1
                logger.exception(
                    "worker tick error",
                    extra={
                        **log_extra,
                        "error_code": getattr(exc, "code", "internal_error"),
                        "error_chain": format_error_chain(exc),
                    },
                )
                if state.consecutive_errors >= settings.max_consecutive_errors:
                    logger.error(
                        "worker giving up after consecutive errors",
                        extra={**log_extra, "error_code": getattr(exc, "code", "internal_error")},
                    )
                    raise
                delay_ms = settings.error_backoff_ms
            else:
                state.ticks_total += 1
                state.consecutive_errors = 0
                logger.info("worker tick", extra={**log_extra, "outcome": outcome.value})
                if outcome is ExecutionOutcome.TASK_COMPLETED:
                    state.tasks_completed_total += 1
                    continue
                state.idle_ticks_total += 1
                delay_ms = settings.idle_backoff_ms

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay_ms / 1000)
            except TimeoutError:
                continue
    finally:
        state.stopped = True
        logger.info("worker loop stopped", extra=log_extra)
