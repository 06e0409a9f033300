"""Environment-driven settings for the checkout tracker.

Values are read on every call so tests can adjust the environment with
``monkeypatch.setenv`` without reloading modules.
"""

import os

RETURN_POLICIES = ("admin", "requester")


def testing() -> bool:
    return os.getenv("TESTING") == "1"


def database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///./test.db")


def redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://localhost:6379/0")


def celery_broker_url() -> str:
    return os.getenv("CELERY_BROKER_URL", "memory://")


def identity_token_secret() -> str:
    return os.getenv("IDENTITY_TOKEN_SECRET") or os.getenv("SECRET_KEY", "change-me")


def identity_token_algorithm() -> str:
    return os.getenv("IDENTITY_TOKEN_ALGORITHM", "HS256")


def admin_emails() -> set[str]:
    raw = os.getenv("ADMIN_EMAILS", "")
    return {email.strip().lower() for email in raw.split(",") if email.strip()}


def checkout_window_hours() -> int:
    return int(os.getenv("CHECKOUT_WINDOW_HOURS", "24"))


def due_soon_window_hours() -> int:
    return int(os.getenv("DUE_SOON_WINDOW_HOURS", "2"))


def return_policy() -> str:
    policy = os.getenv("RETURN_POLICY", "admin").strip().lower()
    if policy not in RETURN_POLICIES:
        raise ValueError(
            f"RETURN_POLICY must be one of {', '.join(RETURN_POLICIES)}, got {policy!r}"
        )
    return policy


def notification_retention_days() -> int:
    return int(os.getenv("NOTIFICATION_RETENTION_DAYS", "30"))


def cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
    return [origin.strip() for origin in raw.split(",") if origin.strip()]
