"""Runtime settings for the dispatch service."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be an integer.") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be a number.") from exc


def _optional_env(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclasses.dataclass(frozen=True)
class DispatchSettings:
    """Environment-driven configuration for the dispatch pipeline."""

    database_url: str | None = None
    timeout_seconds: float = 10.0
    workers: int = 8
    local_timezone: str = "UTC"
    capacity_retries: int = 2
    rate_limit: str = "120/minute"
    oracle_threshold: int = 40
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    analytics_webhook_url: str | None = None
    analytics_webhook_timeout: float = 3.0


@lru_cache(maxsize=1)
def get_settings() -> DispatchSettings:
    """Load settings from the environment with defaults suited to development."""

    return DispatchSettings(
        database_url=_optional_env("DATABASE_URL"),
        timeout_seconds=_float_env("DISPATCH_TIMEOUT_SECONDS", 10.0),
        workers=max(1, _int_env("DISPATCH_WORKERS", 8)),
        local_timezone=os.getenv("DISPATCH_LOCAL_TIMEZONE", "UTC"),
        capacity_retries=max(0, _int_env("DISPATCH_CAPACITY_RETRIES", 2)),
        rate_limit=os.getenv("DISPATCH_RATE_LIMIT", "120/minute"),
        oracle_threshold=_int_env("CLASSIFIER_ORACLE_THRESHOLD", 40),
        openai_api_key=_optional_env("OPENAI_API_KEY"),
        openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        analytics_webhook_url=_optional_env("ANALYTICS_WEBHOOK_URL"),
        analytics_webhook_timeout=_float_env("ANALYTICS_WEBHOOK_TIMEOUT", 3.0),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["DispatchSettings", "get_settings", "reset_settings_cache"]
