"""Tests for environment-driven settings and runtime wiring."""

from __future__ import annotations

import pytest
from app.config import DispatchSettings, get_settings, reset_settings_cache
from app.dispatch.events import LoggingAnalyticsSink, WebhookAnalyticsSink
from app.dispatch.memory import InMemoryDispatchStore
from app.dispatch.oracle import OpenAIIntentOracle
from app.dispatch.runtime import build_oracle, build_runtime, build_sinks, build_store
from app.dispatch.sql import SqlDispatchStore
from app.limits import dispatch_rate_limit, get_client_ip
from app.models.session import normalize_database_url
from starlette.requests import Request


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DATABASE_URL", "DISPATCH_TIMEOUT_SECONDS", "DISPATCH_RATE_LIMIT", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)

    settings = get_settings()

    assert settings.database_url is None
    assert settings.timeout_seconds == 10.0
    assert settings.rate_limit == "120/minute"
    assert settings.openai_api_key is None
    assert dispatch_rate_limit() == "120/minute"


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISPATCH_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("DISPATCH_WORKERS", "0")
    monkeypatch.setenv("DISPATCH_CAPACITY_RETRIES", "4")
    monkeypatch.setenv("DISPATCH_LOCAL_TIMEZONE", "Europe/Lisbon")
    monkeypatch.setenv("ANALYTICS_WEBHOOK_URL", "  ")

    settings = get_settings()

    assert settings.timeout_seconds == 2.5
    assert settings.workers == 1
    assert settings.capacity_retries == 4
    assert settings.local_timezone == "Europe/Lisbon"
    assert settings.analytics_webhook_url is None


def test_invalid_numbers_fail_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISPATCH_WORKERS", "many")

    with pytest.raises(RuntimeError, match="DISPATCH_WORKERS"):
        get_settings()


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgres://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgresql://u@db/app", "postgresql+psycopg://u@db/app"),
        ("postgresql+psycopg://u@db/app", "postgresql+psycopg://u@db/app"),
        ("sqlite:///tmp/x.db", "sqlite:///tmp/x.db"),
    ],
)
def test_normalize_database_url(url: str, expected: str) -> None:
    assert normalize_database_url(url) == expected


def test_build_store_picks_backend() -> None:
    assert isinstance(build_store(DispatchSettings()), InMemoryDispatchStore)
    assert isinstance(build_store(DispatchSettings(database_url="sqlite://")), SqlDispatchStore)


def test_build_sinks_and_oracle() -> None:
    plain = build_sinks(DispatchSettings())
    with_hook = build_sinks(DispatchSettings(analytics_webhook_url="https://hooks.example"))

    assert [type(s) for s in plain] == [LoggingAnalyticsSink]
    assert isinstance(with_hook[-1], WebhookAnalyticsSink)
    assert build_oracle(DispatchSettings()) is None
    assert isinstance(build_oracle(DispatchSettings(openai_api_key="sk-test")), OpenAIIntentOracle)


def test_build_runtime_wires_one_store() -> None:
    store = InMemoryDispatchStore()
    runtime = build_runtime(DispatchSettings(timeout_seconds=1.0), store=store, sinks=[])
    try:
        assert runtime.store is store
        assert runtime.admin.list_agents("owner-1") == []
    finally:
        runtime.close()


def _request(headers: list[tuple[bytes, bytes]]) -> Request:
    return Request({"type": "http", "headers": headers, "client": ("10.0.0.9", 1234)})


def test_client_ip_prefers_forwarded_header() -> None:
    assert get_client_ip(_request([(b"x-forwarded-for", b"1.2.3.4, 10.0.0.1")])) == "1.2.3.4"
    assert get_client_ip(_request([])) == "10.0.0.9"
