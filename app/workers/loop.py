from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging

from app.domain.contracts import DeliveryQueue
from app.domain.dto import DeliveryResult
from app.domain.models import DequeuedTask, ExecutionOutcome

ProcessHandler = Callable[[DequeuedTask], Awaitable[DeliveryResult]]
logger = logging.getLogger("runtime")


@dataclass
class DeliveryWorker:
    role: str
    queue: DeliveryQueue
    process: ProcessHandler

    async def try_execute_one_task(self) -> ExecutionOutcome:
        """Claim one queue row, attempt delivery, then remove the row.

        If anything raises before the delete commits, the claiming
        transaction is rolled back and the row becomes pending again.
        """
        task = await self.queue.dequeue()
        if task is None:
            return ExecutionOutcome.EMPTY_QUEUE

        try:
            result = await self.process(task)
            await self.queue.delete_task(task=task)
        except BaseException:
            await task.transaction.rollback()
            raise

        logger.info(
            "delivery task completed",
            extra={
                "role": self.role,
                "newsletter_issue_id": task.item.newsletter_issue_id,
                "subscriber_email": task.item.subscriber_email,
                "delivery_status": result.status.value,
            },
        )
        return ExecutionOutcome.TASK_COMPLETED
