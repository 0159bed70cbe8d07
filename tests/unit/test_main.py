import pytest

from app.main import run


@pytest.mark.unit
def test_cli_returns_non_zero_for_invalid_role(capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = run(["--role", "bad-role", "--dry-run-startup"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert "ERROR:" in captured.err
    assert "Supported roles" in captured.err
    assert "worker-deliver" in captured.err


@pytest.mark.unit
@pytest.mark.parametrize("role", ["api", "worker-deliver"])
def test_cli_dry_run_succeeds_for_valid_role(role: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("EMAIL_BASE_URL", raising=False)
    exit_code = run(["--role", role, "--dry-run-startup"])
    assert exit_code == 0


@pytest.mark.unit
def test_cli_rejects_invalid_email_sender(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("EMAIL_BASE_URL", "https://email.example.com")
    monkeypatch.setenv("EMAIL_SENDER", "not-an-email")

    exit_code = run(["--role", "worker-deliver", "--dry-run-startup"])
    captured = capsys.readouterr()

    assert exit_code == 2
    assert "invalid configuration" in captured.err
