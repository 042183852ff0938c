"""SQLite-backed tests for :class:`app.dispatch.sql.SqlDispatchStore`."""

from __future__ import annotations

from datetime import timedelta

import importlib

import pytest
import sqlalchemy as sa
from alembic import op
from app.dispatch import schemas
from app.dispatch.committer import AssignmentCommitter
from app.dispatch.errors import DependencyError
from app.dispatch.service import DispatchService
from app.migrations.runner import migration_ids, run_migrations
from app.models.session import get_engine

from conftest import OWNER, WEDNESDAY_MORNING, FixedClock, make_agent


def _assignment(agent_id: str, conversation_id: str = "conv-1") -> schemas.Assignment:
    return schemas.Assignment(
        conversation_id=conversation_id,
        owner_id=OWNER,
        agent_id=agent_id,
        agent_type=schemas.AgentType.AI,
        agent_name=agent_id,
        reason="test",
    )


def test_agent_round_trip_keeps_tags_and_timezone(sql_store):
    sql_store.save_agent(make_agent("bot", tags=["sales", "whatsapp"]))

    agent = sql_store.get_agent("bot", OWNER)

    assert agent is not None
    assert agent.type == schemas.AgentType.AI
    assert agent.category_tags == ["sales", "whatsapp"]
    assert agent.created_at == WEDNESDAY_MORNING
    assert sql_store.get_agent("bot", "other-owner") is None


def test_assignment_rules_sorted_and_conditions_typed(sql_store):
    later = schemas.AssignmentRule(
        owner_id=OWNER,
        name="later",
        target_agent_id="a",
        priority=5,
        trigger_conditions=schemas.TriggerConditions(
            platform="whatsapp", time_of_day={"start": "09", "end": "17"}
        ),
    )
    first = schemas.AssignmentRule(owner_id=OWNER, name="first", target_agent_id="b", priority=1)
    inactive = schemas.AssignmentRule(
        owner_id=OWNER, name="off", target_agent_id="c", priority=0, active=False
    )
    for rule in (later, first, inactive):
        sql_store.save_assignment_rule(rule)

    active = sql_store.list_active_assignment_rules(OWNER)

    assert [rule.name for rule in active] == ["first", "later"]
    conditions = active[1].trigger_conditions
    assert conditions.platform == "whatsapp"
    assert conditions.time_of_day.start_hour == 9
    assert conditions.category is None
    assert len(sql_store.list_assignment_rules(OWNER)) == 3


def test_rule_update_and_delete(sql_store):
    rule = schemas.ClassificationRule(owner_id=OWNER, name="VIP", intent="vip", keywords=["gold"])
    sql_store.save_classification_rule(rule)

    sql_store.save_classification_rule(rule.model_copy(update={"rank": 1, "keywords": ["gold", "vip"]}))
    stored = sql_store.get_classification_rule(rule.id, OWNER)

    assert stored.rank == 1
    assert stored.keywords == ["gold", "vip"]
    assert sql_store.delete_classification_rule(rule.id, "other-owner") is False
    assert sql_store.delete_classification_rule(rule.id, OWNER) is True
    assert sql_store.get_classification_rule(rule.id, OWNER) is None


def test_reserve_and_release_capacity(sql_store):
    sql_store.save_agent(make_agent("bot", capacity=1))

    assert sql_store.reserve_capacity("bot", OWNER) is True
    assert sql_store.reserve_capacity("bot", OWNER) is False
    assert sql_store.check_capacity("bot", OWNER).can_accept is False

    sql_store.release_capacity("bot", OWNER)
    sql_store.release_capacity("bot", OWNER)

    assert sql_store.get_agent("bot", OWNER).current_load == 0


def test_unenforced_reservation_counts_past_the_limit(sql_store):
    sql_store.save_agent(make_agent("bot", capacity=1, load=1))

    assert sql_store.reserve_capacity("bot", OWNER) is False
    assert sql_store.reserve_capacity("bot", OWNER, enforce=False) is True
    assert sql_store.get_agent("bot", OWNER).current_load == 2
    assert sql_store.reserve_capacity("ghost", OWNER, enforce=False) is False


def test_find_available_and_oldest_ai(sql_store):
    sql_store.save_agent(make_agent("full", capacity=1, load=1))
    sql_store.save_agent(make_agent("busy", load=5))
    sql_store.save_agent(make_agent("idle", load=1))
    sql_store.save_agent(
        make_agent("old", status=schemas.AgentStatus.INACTIVE, created_at=WEDNESDAY_MORNING - timedelta(days=3))
    )
    sql_store.save_agent(make_agent("veteran", load=9, created_at=WEDNESDAY_MORNING - timedelta(days=1)))

    assert sql_store.find_available_agent(OWNER).id == "idle"
    assert sql_store.find_available_agent(OWNER, exclude=("idle",)).id == "busy"
    assert sql_store.oldest_active_ai_agent(OWNER).id == "veteran"


def test_partial_unique_index_allows_one_active_assignment(sql_store):
    sql_store.insert_assignment(_assignment("a"))

    with pytest.raises(DependencyError):
        sql_store.insert_assignment(_assignment("b"))

    sql_store.deactivate_assignment("conv-1", OWNER)
    sql_store.insert_assignment(_assignment("b"))

    history = sql_store.list_assignments("conv-1", OWNER)
    assert [a.status for a in history] == [
        schemas.AssignmentStatus.INACTIVE,
        schemas.AssignmentStatus.ACTIVE,
    ]
    assert sql_store.get_active_assignment("conv-1", OWNER).agent_id == "b"


def test_transaction_rolls_back_every_step(sql_store):
    sql_store.save_agent(make_agent("bot"))

    with pytest.raises(RuntimeError):
        with sql_store.transaction("conv-1"):
            sql_store.reserve_capacity("bot", OWNER)
            sql_store.upsert_conversation_if_missing("conv-1", OWNER, {"status": "active"})
            sql_store.insert_assignment(_assignment("bot"))
            raise RuntimeError("abort")

    assert sql_store.get_agent("bot", OWNER).current_load == 0
    assert sql_store.get_conversation("conv-1", OWNER) is None
    assert sql_store.get_active_assignment("conv-1", OWNER) is None


def test_conversation_upsert_is_insert_only(sql_store):
    sql_store.upsert_conversation_if_missing("conv-1", OWNER, {"status": "active", "priority": "high"})
    sql_store.upsert_conversation_if_missing("conv-1", OWNER, {"status": "closed", "priority": "low"})
    sql_store.update_assigned_agent("conv-1", OWNER, "bot", "Bot")

    conversation = sql_store.get_conversation("conv-1", OWNER)

    assert conversation.status == "active"
    assert conversation.priority == "high"
    assert conversation.assigned_agent_id == "bot"


def test_queue_and_business_hours(sql_store):
    assert sql_store.is_within_business_hours(OWNER, WEDNESDAY_MORNING) is True

    sql_store.set_business_hours(schemas.BusinessHours(owner_id=OWNER, days=[0, 6]))
    assert sql_store.is_within_business_hours(OWNER, WEDNESDAY_MORNING) is False
    assert sql_store.get_business_hours(OWNER).days == [0, 6]

    sql_store.enqueue(
        schemas.QueuedMessage(
            conversation_id="conv-1",
            owner_id=OWNER,
            platform="whatsapp",
            content="hello",
            customer_info={"name": "Ana"},
            queued_at=WEDNESDAY_MORNING,
        )
    )
    status = sql_store.queue_status(OWNER)

    assert status.queue_length == 1
    assert status.oldest_queued_at == WEDNESDAY_MORNING
    assert status.estimated_wait_minutes == 5


def test_dispatch_pipeline_on_sqlite(sql_store):
    sql_store.save_agent(make_agent("default-ai", created_at=WEDNESDAY_MORNING - timedelta(days=1)))
    sql_store.save_agent(make_agent("human", type=schemas.AgentType.HUMAN, tags=["support"]))
    sql_store.save_assignment_rule(
        schemas.AssignmentRule(
            owner_id=OWNER,
            name="Support",
            trigger_conditions=schemas.TriggerConditions(category="support"),
            target_agent_id="human",
        )
    )
    service = DispatchService(sql_store, clock=FixedClock())
    request = schemas.DispatchRequest(
        conversation_id="conv-1",
        owner_id=OWNER,
        platform="whatsapp",
        message_content="I need help, the app is broken",
    )

    first = service.dispatch(request)
    second = service.dispatch(request)

    assert first.agent_id == "human"
    assert second.status == "already_assigned"
    assert len(sql_store.list_assignments("conv-1", OWNER)) == 1
    assert sql_store.get_agent("human", OWNER).current_load == 1
    assert sql_store.get_conversation("conv-1", OWNER).assigned_agent_name == "Human"


def test_committer_reassign_on_sqlite(sql_store):
    sql_store.save_agent(make_agent("a"))
    sql_store.save_agent(make_agent("b"))
    committer = AssignmentCommitter(sql_store, sql_store, sql_store)

    committer.commit("conv-1", OWNER, "a", schemas.AgentType.AI, "A", "first")
    committer.reassign("conv-1", OWNER, "b", schemas.AgentType.AI, "B", "moved")

    assert sql_store.get_agent("a", OWNER).current_load == 0
    assert sql_store.get_agent("b", OWNER).current_load == 1
    assert sql_store.get_active_assignment("conv-1", OWNER).agent_id == "b"


def test_run_migrations_is_idempotent(tmp_path):
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'migrated.db'}")
    try:
        first = run_migrations(engine)
        second = run_migrations(engine)
        tables = set(sa.inspect(engine).get_table_names())
    finally:
        engine.dispose()

    assert first == migration_ids()
    assert second == []
    assert {
        "agents",
        "assignment_rules",
        "business_hours",
        "classification_rules",
        "conversation_assignments",
        "conversations",
        "queued_messages",
    } <= tables


def test_migrations_leave_alembic_op_untouched(tmp_path):
    engine = get_engine(f"sqlite+pysqlite:///{tmp_path / 'op.db'}")
    try:
        run_migrations(engine)
    finally:
        engine.dispose()

    module = importlib.import_module(f"app.migrations.{migration_ids()[0]}")
    assert module.op is op
    with pytest.raises(NameError):
        op.get_bind()
