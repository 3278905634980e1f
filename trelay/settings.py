from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    config_path: str = os.getenv("CONFIG_PATH", "/config.yml")
    redis_url: str = os.getenv("REDIS_URL", "redis:6379")
    redis_prefix: str = os.getenv("REDIS_PREFIX", "traefik")
    run_every_s: int = _env_int("RUN_EVERY", 60)
    flush_on_start: bool = _env_bool("FLUSH_ON_START", True)
    db_path: str = os.getenv("RELAY_DB_PATH", "relay.db")
    source_timeout_s: int = _env_int("SOURCE_TIMEOUT_S", 10)

    # Status API
    enable_api: bool = _env_bool("ENABLE_API", True)
    api_port: int = _env_int("API_PORT", 8080)
    status_interval_s: int = _env_int("STATUS_INTERVAL_S", 60)
    admin_user: str = os.getenv("RELAY_ADMIN_USER", "admin")
    # Unset means the mutating endpoints are open.
    admin_password: str | None = os.getenv("RELAY_ADMIN_PASSWORD")
    # Comma-separated origins allowed to call the API from a browser.
    cors_origins: str = os.getenv("RELAY_CORS_ORIGINS", "*")

    # Email alerting (optional)
    enable_email: bool = _env_bool("RELAY_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("RELAY_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("RELAY_SMTP_PORT", 587)
    smtp_starttls: bool = _env_bool("RELAY_SMTP_STARTTLS", True)
    smtp_user: str | None = os.getenv("RELAY_SMTP_USER")
    smtp_password: str | None = os.getenv("RELAY_SMTP_PASSWORD")
    email_from: str | None = os.getenv("RELAY_EMAIL_FROM")
    # Comma-separated recipients.
    email_to: str | None = os.getenv("RELAY_EMAIL_TO")


def redis_dsn(raw: str) -> str:
    """Accept both ``host:port`` and full ``redis://`` URLs."""
    if "://" in raw:
        return raw
    return f"redis://{raw}"


settings = Settings()
