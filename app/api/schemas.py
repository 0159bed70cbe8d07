from __future__ import annotations

from pydantic import BaseModel, Field

from app.domain.idempotency import MAX_IDEMPOTENCY_KEY_LENGTH

NEWSLETTER_ISSUE_ID_PATTERN = r"^iss_[0-9A-HJKMNP-TV-Z]{26}$"


class ErrorResponse(BaseModel):
    detail: str


class WorkerMetrics(BaseModel):
    started: bool
    stopped: bool
    ticks_total: int
    tasks_completed_total: int
    idle_ticks_total: int
    errors_total: int


class HealthResponse(BaseModel):
    status: str
    role: str
    mode: str


class ReadyResponse(BaseModel):
    status: str
    role: str
    mode: str
    worker_loop_enabled: bool
    worker_loop_ready: bool
    worker_metrics: WorkerMetrics


class PublishNewsletterRequest(BaseModel):
    title: str = Field(min_length=1, max_length=256)
    text_content: str = Field(min_length=1)
    html_content: str = Field(min_length=1)
    # Length is checked by IdempotencyKey so that violations map to 400, not 422.
    idempotency_key: str = Field(json_schema_extra={"maxLength": MAX_IDEMPOTENCY_KEY_LENGTH})


class PublishNewsletterResponse(BaseModel):
    newsletter_issue_id: str = Field(pattern=NEWSLETTER_ISSUE_ID_PATTERN)
    detail: str
