"""Utility script to bootstrap the database with a demo owner and routing setup."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass

from dotenv import load_dotenv
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from app.dispatch import schemas
from app.dispatch.sql import SqlDispatchStore
from app.migrations.runner import run_migrations
from app.models.session import get_engine, get_sessionmaker, normalize_database_url

logger = logging.getLogger("seed")


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment for the seed process."""

    db_url: str
    owner_id: str
    ai_agent_name: str
    human_agent_name: str
    human_capacity: int
    business_hours: schemas.BusinessHours | None


def _to_bool(value: str | None) -> bool:
    """Parse a truthy string value into ``bool``."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    try:
        parsed = make_url(db_url)
    except ArgumentError:
        return db_url
    if parsed.password is None:
        return db_url
    redacted = parsed.set(password="***")
    return redacted.render_as_string(hide_password=False)


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return normalize_database_url(direct)

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql+psycopg://{auth}@{host}:{port}/{database}"


def _load_config() -> SeedConfig:
    """Load seed configuration from environment variables."""

    owner_id = os.getenv("SEED_OWNER_ID", "demo-owner").strip()
    hours = None
    if _to_bool(os.getenv("SEED_BUSINESS_HOURS")):
        hours = schemas.BusinessHours(
            owner_id=owner_id,
            start=os.getenv("SEED_BUSINESS_HOURS_START", "09:00"),
            end=os.getenv("SEED_BUSINESS_HOURS_END", "17:00"),
            timezone=os.getenv("SEED_BUSINESS_HOURS_TZ", "UTC"),
        )

    return SeedConfig(
        db_url=_build_database_url(),
        owner_id=owner_id,
        ai_agent_name=os.getenv("SEED_AI_AGENT_NAME", "Demo Assistant").strip(),
        human_agent_name=os.getenv("SEED_HUMAN_AGENT_NAME", "Support Desk").strip(),
        human_capacity=int(os.getenv("SEED_HUMAN_CAPACITY", "5")),
        business_hours=hours,
    )


def wait_for_database(db_url: str, max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a database connection, retrying if necessary."""

    safe_url = _safe_url(db_url)
    engine = get_engine(db_url)
    try:
        for attempt in range(1, max_attempts + 1):
            try:
                with engine.connect() as connection:
                    connection.execute(text("SELECT 1"))
            except Exception as exc:  # pragma: no cover - depends on external DB
                logger.info(
                    "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                    attempt,
                    max_attempts,
                    exc,
                    delay,
                )
                if attempt >= max_attempts:
                    raise RuntimeError("Database did not become ready in time") from exc
                time.sleep(delay)
                continue

            logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
            return
    finally:
        engine.dispose()


def _run_schema_migrations(db_url: str) -> None:
    """Execute idempotent schema creation and migrations."""

    engine = get_engine(db_url)
    try:
        ran = run_migrations(engine)
    finally:
        engine.dispose()
    logger.info("Schema ensured successfully (%d migration(s) applied).", len(ran))


def _provision_owner(store: SqlDispatchStore, config: SeedConfig) -> list[schemas.Agent]:
    """Create or reuse the demo agents, a support routing rule and business hours."""

    existing = {agent.name: agent for agent in store.list_agents(config.owner_id)}

    ai_agent = existing.get(config.ai_agent_name)
    if ai_agent is None:
        ai_agent = store.save_agent(
            schemas.Agent(
                owner_id=config.owner_id,
                type=schemas.AgentType.AI,
                name=config.ai_agent_name,
            )
        )
        logger.info("Created AI agent %s (%s)", ai_agent.name, ai_agent.id)
    else:
        logger.info("AI agent %s already exists; reusing.", ai_agent.name)

    human_agent = existing.get(config.human_agent_name)
    if human_agent is None:
        human_agent = store.save_agent(
            schemas.Agent(
                owner_id=config.owner_id,
                type=schemas.AgentType.HUMAN,
                name=config.human_agent_name,
                capacity_limit=config.human_capacity,
                category_tags=["support"],
            )
        )
        logger.info("Created human agent %s (%s)", human_agent.name, human_agent.id)
    else:
        logger.info("Human agent %s already exists; reusing.", human_agent.name)

    rule_names = {rule.name for rule in store.list_assignment_rules(config.owner_id)}
    if "Support to humans" not in rule_names:
        store.save_assignment_rule(
            schemas.AssignmentRule(
                owner_id=config.owner_id,
                name="Support to humans",
                trigger_conditions=schemas.TriggerConditions(
                    category=schemas.IntentCategory.SUPPORT
                ),
                target_agent_id=human_agent.id,
                priority=10,
            )
        )
        logger.info("Created assignment rule 'Support to humans'")

    if config.business_hours is not None:
        store.set_business_hours(config.business_hours)
        logger.info(
            "Business hours set to %s-%s %s",
            config.business_hours.start,
            config.business_hours.end,
            config.business_hours.timezone,
        )

    return [ai_agent, human_agent]


async def main() -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    config = _load_config()
    wait_for_database(config.db_url)
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    await asyncio.to_thread(_run_schema_migrations, config.db_url)

    store = SqlDispatchStore(get_sessionmaker(database_url=config.db_url))
    agents = await asyncio.to_thread(_provision_owner, store, config)

    logger.info(
        "Seed process completed. Owner %s has agents: %s",
        config.owner_id,
        ", ".join(agent.name for agent in agents),
    )


if __name__ == "__main__":
    asyncio.run(main())
