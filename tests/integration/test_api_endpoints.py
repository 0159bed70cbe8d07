import asyncio

from fastapi.testclient import TestClient
import httpx
import pytest

from app.api.handlers.newsletters import ACCEPTED_DETAIL
from app.api.http_app import build_app
from app.domain.errors import StorageError
from app.roles import validate_role
from app.services.bootstrap import build_runtime_container
from app.services.settings import DatabaseSettings, EmailClientSettings
from app.workers.runner import WorkerRuntimeSettings
from tests.integration.newsletter_harness import NewsletterHarness, TestSetup


@pytest.mark.integration
def test_system_endpoints_are_available() -> None:
    role = validate_role("api")
    container = build_runtime_container(
        role,
        database=DatabaseSettings(url=None),
        email=EmailClientSettings(base_url=None),
    )
    app = build_app(
        role=role.name,
        run_id="integration-api",
        worker=container.worker,
        api_deps=container.api_deps,
    )

    with TestClient(app) as client:
        health = client.get("/health")
        ready = client.get("/ready")

    assert health.status_code == 200
    assert health.json() == {"status": "ok", "role": "api", "mode": "outbox"}
    assert ready.status_code == 200
    assert ready.json()["worker_loop_enabled"] is False
    assert ready.json()["worker_loop_ready"] is True


@pytest.mark.integration
def test_publish_then_retry_returns_identical_response_and_drains_once() -> None:
    harness = NewsletterHarness(setup=TestSetup())

    with harness.client() as client:
        first = harness.publish(client, idempotency_key="issue-1")
        second = harness.publish(client, idempotency_key="issue-1")

    assert first.status_code == 200
    assert first.json()["detail"] == ACCEPTED_DETAIL
    assert first.json()["newsletter_issue_id"].startswith("iss_")
    assert second.status_code == first.status_code
    assert second.content == first.content
    assert second.headers.multi_items() == first.headers.multi_items()
    assert asyncio.run(harness.repository.count_pending_deliveries()) == 2

    assert harness.drain() == 2
    assert sorted(sent.recipient for sent in harness.email_client.sent) == ["a@example.com", "b@example.com"]
    assert {(sent.subject, sent.text_content, sent.html_content) for sent in harness.email_client.sent} == {
        ("T", "body", "<p>body</p>")
    }
    assert harness.drain() == 0


@pytest.mark.integration
def test_different_keys_publish_separate_issues() -> None:
    harness = NewsletterHarness(setup=TestSetup(recipients=("a@example.com",)))

    with harness.client() as client:
        first = harness.publish(client, idempotency_key="issue-1")
        second = harness.publish(client, idempotency_key="issue-2")

    assert first.json()["newsletter_issue_id"] != second.json()["newsletter_issue_id"]
    assert harness.drain() == 2


@pytest.mark.integration
def test_same_key_from_another_user_publishes_again() -> None:
    harness = NewsletterHarness(setup=TestSetup(recipients=("a@example.com",)))
    other = NewsletterHarness(setup=TestSetup(user_id="user-2"), repository=harness.repository)

    with harness.client() as client:
        first = harness.publish(client, idempotency_key="issue-1")
        second = other.publish(client, idempotency_key="issue-1")

    assert first.json()["newsletter_issue_id"] != second.json()["newsletter_issue_id"]
    assert len(harness.repository.issues) == 2


@pytest.mark.integration
def test_concurrent_submissions_with_same_key_publish_once() -> None:
    harness = NewsletterHarness(setup=TestSetup())
    app = harness.app()

    async def _run() -> list[httpx.Response]:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            return list(
                await asyncio.gather(
                    harness.publish_async(client, idempotency_key="issue-1"),
                    harness.publish_async(client, idempotency_key="issue-1"),
                )
            )

    responses = asyncio.run(_run())

    assert [response.status_code for response in responses] == [200, 200]
    assert responses[0].content == responses[1].content
    assert len(harness.repository.issues) == 1
    assert harness.drain() == 2


@pytest.mark.integration
def test_publish_with_no_confirmed_subscribers_succeeds() -> None:
    harness = NewsletterHarness(setup=TestSetup(recipients=()))

    with harness.client() as client:
        response = harness.publish(client, idempotency_key="issue-1")

    assert response.status_code == 200
    assert harness.drain() == 0


@pytest.mark.integration
def test_failing_recipient_does_not_block_others() -> None:
    harness = NewsletterHarness(
        setup=TestSetup(
            recipients=("a@example.com", "b@example.com", "broken-address"),
            failing_recipients=frozenset({"a@example.com"}),
        )
    )

    with harness.client() as client:
        assert harness.publish(client, idempotency_key="issue-1").status_code == 200

    assert harness.drain() == 3
    assert [sent.recipient for sent in harness.email_client.sent] == ["b@example.com"]
    assert harness.email_client.attempts == 2


@pytest.mark.integration
@pytest.mark.parametrize("idempotency_key", ["", "k" * 51])
def test_invalid_idempotency_key_is_rejected(idempotency_key: str) -> None:
    harness = NewsletterHarness(setup=TestSetup())

    with harness.client() as client:
        response = harness.publish(client, idempotency_key=idempotency_key)

    assert response.status_code == 400
    assert "idempotency key" in response.json()["detail"]
    assert harness.repository.issues == {}


@pytest.mark.integration
def test_missing_user_is_unauthorized_and_bad_body_is_unprocessable() -> None:
    harness = NewsletterHarness(setup=TestSetup())

    with harness.client() as client:
        anonymous = client.post(
            "/admin/newsletters",
            json={"title": "T", "text_content": "body", "html_content": "<p>body</p>", "idempotency_key": "k"},
        )
        empty_title = harness.publish(client, idempotency_key="issue-1", title="")

    assert anonymous.status_code == 401
    assert empty_title.status_code == 422
    assert harness.repository.issues == {}


@pytest.mark.integration
def test_storage_failure_is_surfaced_without_leaking_details() -> None:
    harness = NewsletterHarness(setup=TestSetup())

    async def _broken_recipients(*, transaction=None) -> list[str]:
        raise StorageError("password authentication failed for user app")

    harness.repository.confirmed_recipients = _broken_recipients  # type: ignore[method-assign]

    with harness.client() as client:
        failed = harness.publish(client, idempotency_key="issue-1")

    assert failed.status_code == 500
    assert failed.json() == {"detail": "internal server error"}
    assert harness.repository.idempotency == {}


@pytest.mark.integration
def test_worker_role_runs_delivery_loop_in_lifespan() -> None:
    role = validate_role("worker-deliver")
    container = build_runtime_container(
        role,
        database=DatabaseSettings(url=None),
        email=EmailClientSettings(base_url=None),
    )
    asyncio.run(
        container.repository.publish_issue(
            title="T",
            text_content="body",
            html_content="<p>body</p>",
            recipients=["a@example.com"],
        )
    )
    app = build_app(
        role=role.name,
        run_id="integration-worker",
        worker=container.worker,
        worker_runtime_settings=WorkerRuntimeSettings(idle_backoff_ms=10, error_backoff_ms=10),
        api_deps=container.api_deps,
    )

    with TestClient(app) as client:
        for _ in range(50):
            ready = client.get("/ready")
            if not container.repository.queue:
                break

    payload = ready.json()
    assert payload["worker_loop_enabled"] is True
    assert payload["worker_loop_ready"] is True
    assert payload["worker_metrics"]["started"] is True
    assert [sent.recipient for sent in container.email_client.sent] == ["a@example.com"]


@pytest.mark.integration
def test_corrupt_saved_response_is_surfaced_as_server_error() -> None:
    harness = NewsletterHarness(setup=TestSetup())

    with harness.client() as client:
        first = harness.publish(client, idempotency_key="issue-1")
        for row in harness.repository.idempotency.values():
            row.response_headers = b"not json"
        replay = harness.publish(client, idempotency_key="issue-1")

    assert first.status_code == 200
    assert replay.status_code == 500
    assert replay.json() == {"detail": "internal server error"}
    assert len(harness.repository.issues) == 1
