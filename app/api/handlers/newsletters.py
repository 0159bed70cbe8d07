from __future__ import annotations

from fastapi.responses import JSONResponse

from app.api.handlers.deps import ApiDeps
from app.api.responses import to_stored_response
from app.api.schemas import PublishNewsletterRequest, PublishNewsletterResponse
from app.domain.dto import PublishNewsletterCommand, PublishNewsletterResult
from app.domain.idempotency import IdempotencyKey
from app.domain.models import StoredResponse
from app.domain.use_cases.publish import publish_newsletter

COMPONENT_ID = "api.publish_newsletter"
ACCEPTED_DETAIL = "The newsletter issue has been accepted - emails will go out shortly."


def render_accepted_response(newsletter_issue_id: str) -> StoredResponse:
    body = PublishNewsletterResponse(newsletter_issue_id=newsletter_issue_id, detail=ACCEPTED_DETAIL)
    return to_stored_response(JSONResponse(status_code=200, content=body.model_dump()))


async def publish_newsletter_handler(
    *,
    user_id: str,
    request: PublishNewsletterRequest,
    api_deps: ApiDeps,
) -> PublishNewsletterResult:
    cmd = PublishNewsletterCommand(
        user_id=user_id,
        key=IdempotencyKey.parse(request.idempotency_key),
        title=request.title,
        text_content=request.text_content,
        html_content=request.html_content,
    )
    return await publish_newsletter(
        cmd,
        idempotency=api_deps.idempotency,
        outbox=api_deps.outbox,
        recipients=api_deps.recipients,
        render_response=render_accepted_response,
    )
