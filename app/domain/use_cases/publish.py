from __future__ import annotations

from collections.abc import Callable
import logging

from app.domain.contracts import IdempotencyStore, IssueOutbox, RecipientProvider
from app.domain.dto import PublishNewsletterCommand, PublishNewsletterResult
from app.domain.models import Replay, StoredResponse

COMPONENT_ID = "domain.newsletter.publish"

ResponseRenderer = Callable[[str], StoredResponse]
logger = logging.getLogger("runtime")


async def publish_newsletter(
    cmd: PublishNewsletterCommand,
    *,
    idempotency: IdempotencyStore,
    outbox: IssueOutbox,
    recipients: RecipientProvider,
    render_response: ResponseRenderer,
) -> PublishNewsletterResult:
    """Publish an issue at most once per (user, idempotency key).

    The idempotency claim, the issue with its delivery queue rows and the
    cached response share one transaction: all of them become visible, or
    none does and a retry with the same key may claim again.
    """
    claim = await idempotency.claim_or_replay(key=cmd.key, user_id=cmd.user_id)
    if isinstance(claim, Replay):
        logger.info(
            "idempotent replay served",
            extra={"user_id": cmd.user_id, "idempotency_key": cmd.key.value},
        )
        return PublishNewsletterResult(response=claim.response, replayed=True)

    transaction = claim.transaction
    try:
        snapshot = await recipients.confirmed_recipients(transaction=transaction)
        newsletter_issue_id = await outbox.publish_issue(
            title=cmd.title,
            text_content=cmd.text_content,
            html_content=cmd.html_content,
            recipients=snapshot,
            transaction=transaction,
        )
        stored = await idempotency.commit_response(
            transaction,
            key=cmd.key,
            user_id=cmd.user_id,
            response=render_response(newsletter_issue_id),
        )
    except BaseException:
        await transaction.rollback()
        raise

    logger.info(
        "newsletter issue published",
        extra={
            "user_id": cmd.user_id,
            "newsletter_issue_id": newsletter_issue_id,
            "recipient_count": len(set(snapshot)),
        },
    )
    return PublishNewsletterResult(
        response=stored,
        replayed=False,
        newsletter_issue_id=newsletter_issue_id,
    )
