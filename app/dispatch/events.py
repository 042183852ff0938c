"""Fire-and-forget side effects: analytics and notification sinks.

Events are handed to a small thread pool and never awaited by the dispatch
path. A failing sink is logged and otherwise ignored.
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

import requests

from .stores import AnalyticsSink

logger = logging.getLogger(__name__)


class LoggingAnalyticsSink:
    """Write analytics events as JSON lines to the ``app.dispatch.events`` logger."""

    def record_event(self, kind: str, payload: Dict[str, Any]) -> None:
        logger.info(json.dumps({"event": kind, **payload}, default=str))


class WebhookAnalyticsSink:
    """POST analytics events to an HTTP endpoint."""

    def __init__(self, url: str, *, timeout: float = 3.0, session: requests.Session | None = None):
        self._url = url
        self._timeout = timeout
        self._session = session or requests.Session()

    def record_event(self, kind: str, payload: Dict[str, Any]) -> None:
        body = {
            "event": kind,
            "payload": payload,
            "emitted_at": datetime.now(timezone.utc).isoformat(),
        }
        response = self._session.post(
            self._url,
            data=json.dumps(body, default=str),
            headers={"Content-Type": "application/json"},
            timeout=self._timeout,
        )
        response.raise_for_status()


class RecordingAnalyticsSink:
    """Keep events in memory; handy for tests and local inspection."""

    def __init__(self) -> None:
        self.events: List[tuple[str, Dict[str, Any]]] = []

    def record_event(self, kind: str, payload: Dict[str, Any]) -> None:
        self.events.append((kind, dict(payload)))

    def kinds(self) -> List[str]:
        return [kind for kind, _ in self.events]


class BackgroundEmitter:
    """Dispatch events to every sink on a detached executor."""

    def __init__(self, sinks: Iterable[AnalyticsSink], *, max_workers: int = 2) -> None:
        self._sinks = list(sinks)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dispatch-events"
        )

    def emit(self, kind: str, payload: Dict[str, Any]) -> List[Future]:
        futures: List[Future] = []
        for sink in self._sinks:
            try:
                future = self._executor.submit(sink.record_event, kind, payload)
            except RuntimeError:
                logger.warning("Event executor is shut down; dropping %s event", kind)
                break
            future.add_done_callback(_log_failure(kind, sink))
            futures.append(future)
        return futures

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_failure(kind: str, sink: AnalyticsSink):
    def _callback(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning(
                "Analytics sink %s failed to record %s event: %s",
                type(sink).__name__,
                kind,
                exc,
            )

    return _callback


__all__ = [
    "BackgroundEmitter",
    "LoggingAnalyticsSink",
    "RecordingAnalyticsSink",
    "WebhookAnalyticsSink",
]
