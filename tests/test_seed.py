"""Integration-style tests for the seeding helpers."""

from __future__ import annotations

from pathlib import Path

import pytest
import seed
from app.dispatch import schemas
from app.dispatch.sql import SqlDispatchStore
from app.models.session import get_sessionmaker
from seed import SeedConfig, _load_config, _provision_owner, _run_schema_migrations, _safe_url


def _config(db_url: str = "sqlite://", **overrides) -> SeedConfig:
    values = dict(
        db_url=db_url,
        owner_id="demo-owner",
        ai_agent_name="Demo Assistant",
        human_agent_name="Support Desk",
        human_capacity=3,
        business_hours=None,
    )
    values.update(overrides)
    return SeedConfig(**values)


def test_provision_owner_is_idempotent(sql_store: SqlDispatchStore) -> None:
    config = _config(
        business_hours=schemas.BusinessHours(owner_id="demo-owner", start="08:00", end="20:00")
    )

    first = _provision_owner(sql_store, config)
    second = _provision_owner(sql_store, config)

    assert [agent.id for agent in first] == [agent.id for agent in second]
    agents = sql_store.list_agents("demo-owner")
    assert sorted(agent.name for agent in agents) == ["Demo Assistant", "Support Desk"]
    human = next(agent for agent in agents if agent.type == schemas.AgentType.HUMAN)
    assert human.capacity_limit == 3
    assert human.category_tags == ["support"]

    rules = sql_store.list_assignment_rules("demo-owner")
    assert len(rules) == 1
    assert rules[0].target_agent_id == human.id
    assert rules[0].trigger_conditions.category == schemas.IntentCategory.SUPPORT
    assert sql_store.get_business_hours("demo-owner").end == "20:00"


def test_seeded_owner_routes_support_to_humans(sql_store: SqlDispatchStore) -> None:
    from app.dispatch.service import DispatchService

    ai_agent, human = _provision_owner(sql_store, _config())
    service = DispatchService(sql_store)

    support = service.dispatch(
        schemas.DispatchRequest(
            conversation_id="c-1",
            owner_id="demo-owner",
            platform="web",
            message_content="I need help, something is broken",
        )
    )
    sales = service.dispatch(
        schemas.DispatchRequest(
            conversation_id="c-2",
            owner_id="demo-owner",
            platform="web",
            message_content="How much is the pro plan?",
        )
    )

    assert support.agent_id == human.id
    assert sales.agent_id == ai_agent.id


def test_schema_migrations_on_sqlite(tmp_path: Path) -> None:
    db_url = f"sqlite:///{tmp_path / 'seed.db'}"

    _run_schema_migrations(db_url)
    _run_schema_migrations(db_url)

    store = SqlDispatchStore(get_sessionmaker(db_url))
    assert store.list_agents("demo-owner") == []


def test_load_config_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgres://seed:pw@db:5432/dispatch")
    monkeypatch.setenv("SEED_OWNER_ID", " acme ")
    monkeypatch.setenv("SEED_HUMAN_CAPACITY", "7")
    monkeypatch.setenv("SEED_BUSINESS_HOURS", "yes")
    monkeypatch.setenv("SEED_BUSINESS_HOURS_TZ", "America/Sao_Paulo")

    config = _load_config()

    assert config.db_url == "postgresql+psycopg://seed:pw@db:5432/dispatch"
    assert config.owner_id == "acme"
    assert config.human_capacity == 7
    assert config.business_hours is not None
    assert config.business_hours.owner_id == "acme"
    assert config.business_hours.timezone == "America/Sao_Paulo"


def test_database_url_from_pg_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("PGHOST", "db")
    monkeypatch.setenv("PGDATABASE", "dispatch")
    monkeypatch.setenv("PGUSER", "seed")
    monkeypatch.setenv("PGPASSWORD", "pw")
    monkeypatch.delenv("SEED_BUSINESS_HOURS", raising=False)

    config = _load_config()

    assert config.db_url == "postgresql+psycopg://seed:pw@db:5432/dispatch"
    assert config.business_hours is None


def test_missing_database_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("DATABASE_URL", "PGHOST", "PGDATABASE", "PGUSER"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(RuntimeError):
        _load_config()


def test_safe_url_redacts_password() -> None:
    assert "pw" not in _safe_url("postgresql+psycopg://seed:pw@db/dispatch")
    assert _safe_url("sqlite:///tmp/x.db") == "sqlite:///tmp/x.db"


def test_wait_for_database_succeeds(tmp_path: Path) -> None:
    seed.wait_for_database(f"sqlite:///{tmp_path / 'ready.db'}", max_attempts=1, delay=0.0)


class _UnreachableEngine:
    def __init__(self) -> None:
        self.attempts = 0
        self.disposed = False

    def connect(self):
        self.attempts += 1
        raise OSError("connection refused")

    def dispose(self) -> None:
        self.disposed = True


def test_wait_for_database_raises_after_attempts(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _UnreachableEngine()
    monkeypatch.setattr(seed, "get_engine", lambda url: engine)

    with pytest.raises(RuntimeError, match="did not become ready"):
        seed.wait_for_database("postgresql+psycopg://seed@db/dispatch", max_attempts=3, delay=0.0)

    assert engine.attempts == 3
    assert engine.disposed is True
