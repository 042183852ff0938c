import os
import pathlib
import sys
import tempfile
from datetime import datetime, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="dispatch-logs-"))

from app.app_logging import init_logging
from app.dispatch import schemas
from app.dispatch.events import BackgroundEmitter, RecordingAnalyticsSink
from app.dispatch.memory import InMemoryDispatchStore
from app.dispatch.sql import SqlDispatchStore
from app.models.session import create_schema, get_engine
from sqlalchemy.orm import sessionmaker

OWNER = "owner-1"

# Wednesday 2024-05-15 at 10:30 UTC.
WEDNESDAY_MORNING = datetime(2024, 5, 15, 10, 30, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that tests can move by hand."""

    def __init__(self, now: datetime = WEDNESDAY_MORNING) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_agent(
    name: str,
    *,
    type: schemas.AgentType = schemas.AgentType.AI,
    owner_id: str = OWNER,
    capacity: int = 10,
    load: int = 0,
    tags: list[str] | None = None,
    status: schemas.AgentStatus = schemas.AgentStatus.ACTIVE,
    created_at: datetime | None = None,
) -> schemas.Agent:
    return schemas.Agent(
        id=name,
        owner_id=owner_id,
        type=type,
        name=name.replace("-", " ").title(),
        status=status,
        capacity_limit=capacity,
        current_load=load,
        category_tags=tags or [],
        created_at=created_at or WEDNESDAY_MORNING,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryDispatchStore:
    return InMemoryDispatchStore()


@pytest.fixture
def sink() -> RecordingAnalyticsSink:
    return RecordingAnalyticsSink()


@pytest.fixture
def emitter(sink: RecordingAnalyticsSink):
    emitter = BackgroundEmitter([sink])
    yield emitter
    emitter.shutdown(wait=True)


@pytest.fixture
def sql_store(tmp_path: pathlib.Path) -> SqlDispatchStore:
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'dispatch.db'}")
    create_schema(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    yield SqlDispatchStore(factory)
    engine.dispose()


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


@pytest.fixture
def api(monkeypatch: pytest.MonkeyPatch):
    """Test client wired to an in-memory runtime; requests use ``X-Owner-Id``."""

    from fastapi.testclient import TestClient

    from app.config import DispatchSettings
    from app.dispatch.runtime import build_runtime, set_runtime
    from app.main import app

    monkeypatch.delenv("OWNER_TOKEN_SECRET", raising=False)
    memory = InMemoryDispatchStore()
    recorded = RecordingAnalyticsSink()
    runtime = build_runtime(DispatchSettings(), store=memory, sinks=[recorded])
    set_runtime(runtime)
    client = TestClient(app)
    client.headers.update({"X-Owner-Id": OWNER})
    client.store = memory
    client.sink = recorded
    client.runtime = runtime
    yield client
    set_runtime(None)
