"""Tests for analytics sinks and the background emitter."""

from __future__ import annotations

import json
import logging

import pytest
import requests
from app.dispatch.events import (
    BackgroundEmitter,
    LoggingAnalyticsSink,
    RecordingAnalyticsSink,
    WebhookAnalyticsSink,
)


class _FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")


class _FakeSession:
    def __init__(self, status_code: int = 204) -> None:
        self.status_code = status_code
        self.posts: list[dict] = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.posts.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        return _FakeResponse(self.status_code)


class _ExplodingSink:
    def record_event(self, kind, payload):
        raise RuntimeError("sink down")


def test_webhook_sink_posts_json_envelope():
    session = _FakeSession()
    sink = WebhookAnalyticsSink("https://hooks.example/analytics", timeout=1.5, session=session)

    sink.record_event("conversation_assigned", {"conversation_id": "conv-1"})

    post = session.posts[0]
    assert post["url"] == "https://hooks.example/analytics"
    assert post["timeout"] == 1.5
    assert post["headers"]["Content-Type"] == "application/json"
    body = json.loads(post["data"])
    assert body["event"] == "conversation_assigned"
    assert body["payload"] == {"conversation_id": "conv-1"}
    assert "emitted_at" in body


def test_webhook_sink_raises_on_http_error():
    sink = WebhookAnalyticsSink("https://hooks.example", session=_FakeSession(500))

    with pytest.raises(requests.HTTPError):
        sink.record_event("message_queued", {})


def test_logging_sink_writes_json(caplog):
    with caplog.at_level(logging.INFO, logger="app.dispatch.events"):
        LoggingAnalyticsSink().record_event("message_queued", {"owner_id": "owner-1"})

    data = json.loads(caplog.records[-1].getMessage())
    assert data == {"event": "message_queued", "owner_id": "owner-1"}


def test_emitter_fans_out_and_survives_failing_sink(caplog):
    recorder = RecordingAnalyticsSink()
    emitter = BackgroundEmitter([_ExplodingSink(), recorder])

    with caplog.at_level(logging.WARNING, logger="app.dispatch.events"):
        futures = emitter.emit("conversation_assigned", {"agent_id": "bot"})
        emitter.shutdown(wait=True)

    assert len(futures) == 2
    assert recorder.kinds() == ["conversation_assigned"]
    assert any("sink down" in record.getMessage() for record in caplog.records)


def test_emit_after_shutdown_is_dropped():
    recorder = RecordingAnalyticsSink()
    emitter = BackgroundEmitter([recorder])
    emitter.shutdown(wait=True)

    assert emitter.emit("conversation_assigned", {}) == []
    assert recorder.events == []
