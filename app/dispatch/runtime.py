"""Process-wide wiring of the dispatch collaborators from settings."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from app.config import DispatchSettings, get_settings
from app.models.session import get_sessionmaker

from .admin import DispatchAdminService
from .events import BackgroundEmitter, LoggingAnalyticsSink, WebhookAnalyticsSink
from .memory import InMemoryDispatchStore
from .oracle import IntentOracle, OpenAIIntentOracle
from .service import DispatchRunner, DispatchService
from .sql import SqlDispatchStore
from .stores import AnalyticsSink, DispatchStore

logger = logging.getLogger(__name__)


@dataclass
class DispatchRuntime:
    store: DispatchStore
    service: DispatchService
    admin: DispatchAdminService
    runner: DispatchRunner
    emitter: BackgroundEmitter

    def close(self) -> None:
        self.runner.shutdown(wait=False)
        self.emitter.shutdown(wait=False)


def build_store(settings: DispatchSettings) -> DispatchStore:
    if settings.database_url:
        return SqlDispatchStore(get_sessionmaker(settings.database_url, pool_pre_ping=True))
    logger.warning("DATABASE_URL is not configured; using the in-memory dispatch store")
    return InMemoryDispatchStore()


def build_sinks(settings: DispatchSettings) -> List[AnalyticsSink]:
    sinks: List[AnalyticsSink] = [LoggingAnalyticsSink()]
    if settings.analytics_webhook_url:
        sinks.append(
            WebhookAnalyticsSink(
                settings.analytics_webhook_url, timeout=settings.analytics_webhook_timeout
            )
        )
    return sinks


def build_oracle(settings: DispatchSettings) -> Optional[IntentOracle]:
    if not settings.openai_api_key:
        return None
    return OpenAIIntentOracle.from_api_key(
        settings.openai_api_key,
        model=settings.openai_model,
        timeout=max(1.0, settings.timeout_seconds / 2),
    )


def build_runtime(
    settings: DispatchSettings | None = None,
    *,
    store: DispatchStore | None = None,
    sinks: List[AnalyticsSink] | None = None,
    oracle: IntentOracle | None = None,
) -> DispatchRuntime:
    settings = settings or get_settings()
    store = store if store is not None else build_store(settings)
    emitter = BackgroundEmitter(sinks if sinks is not None else build_sinks(settings))
    service = DispatchService(
        store,
        emitter=emitter,
        oracle=oracle if oracle is not None else build_oracle(settings),
        oracle_threshold=settings.oracle_threshold,
        local_timezone=settings.local_timezone,
        capacity_retries=settings.capacity_retries,
    )
    runner = DispatchRunner(
        service, timeout_seconds=settings.timeout_seconds, max_workers=settings.workers
    )
    return DispatchRuntime(
        store=store,
        service=service,
        admin=DispatchAdminService(store),
        runner=runner,
        emitter=emitter,
    )


_runtime: DispatchRuntime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> DispatchRuntime:
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = build_runtime()
        return _runtime


def set_runtime(runtime: DispatchRuntime | None) -> None:
    """Swap the process runtime; tests install one backed by in-memory stores."""

    global _runtime
    with _runtime_lock:
        previous, _runtime = _runtime, runtime
    if previous is not None and previous is not runtime:
        previous.close()


__all__ = [
    "DispatchRuntime",
    "build_oracle",
    "build_runtime",
    "build_sinks",
    "build_store",
    "get_runtime",
    "set_runtime",
]
