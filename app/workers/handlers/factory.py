from __future__ import annotations

from app.domain.dto import DeliveryResult
from app.domain.models import DequeuedTask
from app.workers.handlers import deliver
from app.workers.handlers.deps import WorkerDeps
from app.workers.loop import ProcessHandler


def build_process_handler(role: str, deps: WorkerDeps) -> ProcessHandler:
    async def _deliver(task: DequeuedTask) -> DeliveryResult:
        return await deliver.process_task(deps, task=task)

    handlers: dict[str, ProcessHandler] = {
        "worker-deliver": _deliver,
    }
    handler = handlers.get(role)
    if handler is None:
        raise ValueError(f"No worker handler for role '{role}'")
    return handler
