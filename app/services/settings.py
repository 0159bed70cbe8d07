from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class DatabaseSettings:
    url: str | None
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass(frozen=True)
class EmailClientSettings:
    base_url: str | None
    sender: str = "newsletter@example.com"
    authorization_token: str = ""
    timeout_ms: int = 10000

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


def database_settings_from_env() -> DatabaseSettings:
    min_size = env_int("DATABASE_POOL_MIN_SIZE", 1)
    max_size = env_int("DATABASE_POOL_MAX_SIZE", 5)
    return DatabaseSettings(
        url=os.getenv("DATABASE_URL") or None,
        pool_min_size=min_size,
        pool_max_size=max(max_size, min_size),
    )


def email_client_settings_from_env() -> EmailClientSettings:
    return EmailClientSettings(
        base_url=os.getenv("EMAIL_BASE_URL") or None,
        sender=os.getenv("EMAIL_SENDER") or "newsletter@example.com",
        authorization_token=os.getenv("EMAIL_AUTHORIZATION_TOKEN", ""),
        timeout_ms=env_int("EMAIL_TIMEOUT_MS", 10000),
    )


def env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default

    try:
        parsed = int(value)
    except ValueError:
        return default

    return parsed if parsed > 0 else default
