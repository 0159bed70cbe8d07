from __future__ import annotations

import logging

from app.domain.dto import DeliveryResult
from app.domain.error_taxonomy import classify_error, resolve_component_error
from app.domain.errors import InvalidRecipientAddressError, format_error_chain
from app.domain.models import DeliveryStatus, DequeuedTask
from app.domain.subscriber_email import SubscriberEmail
from app.workers.handlers.deps import WorkerDeps

COMPONENT_ID = "worker.deliver.process_task"
logger = logging.getLogger("runtime")


async def process_task(deps: WorkerDeps, *, task: DequeuedTask) -> DeliveryResult:
    """Send one queued issue to one subscriber.

    Invalid addresses and send failures are logged and reported in the
    result; the caller removes the queue row either way.
    """
    item = task.item
    log_extra = {
        "newsletter_issue_id": item.newsletter_issue_id,
        "subscriber_email": item.subscriber_email,
    }

    try:
        recipient = SubscriberEmail.parse(item.subscriber_email)
    except InvalidRecipientAddressError as exc:
        error_code = resolve_component_error(component="delivery", code=exc.code)
        logger.error(
            "skipping a confirmed subscriber, their stored email address is invalid",
            extra={
                **log_extra,
                "error_code": error_code,
                "disposition": classify_error(error_code),
                "error_chain": format_error_chain(exc),
            },
        )
        return DeliveryResult(item=item, status=DeliveryStatus.SKIPPED_INVALID_ADDRESS, detail=str(exc))

    issue = await deps.queue.get_issue(task=task)

    try:
        await deps.email_client.send_email(
            recipient=recipient,
            subject=issue.title,
            html_content=issue.html_content,
            text_content=issue.text_content,
        )
    except Exception as exc:
        # Sends are not retried; the row is removed like a successful one.
        error_code = resolve_component_error(component="delivery", code="delivery_transport_failed")
        logger.error(
            "failed to deliver issue to a confirmed subscriber, skipping",
            extra={
                **log_extra,
                "error_code": error_code,
                "disposition": classify_error(error_code),
                "error_chain": format_error_chain(exc),
            },
        )
        return DeliveryResult(item=item, status=DeliveryStatus.SEND_FAILED, detail=str(exc))

    return DeliveryResult(item=item, status=DeliveryStatus.SENT, detail="issue delivered")
