"""Tests for capacity checks, agent ranking and the default fallback."""

from __future__ import annotations

from datetime import timedelta

import pytest
from app.dispatch import schemas
from app.dispatch.capacity import (
    DEFAULT_REASON,
    REASSIGNED_REASON,
    CapacityAwareDispatcher,
    DefaultAssignmentFallback,
    check_agent_capacity,
    pick_oldest_ai_agent,
    rank_available_agents,
)
from app.dispatch.errors import NoAvailableAgentError

from conftest import OWNER, WEDNESDAY_MORNING, make_agent

HUMAN = schemas.AgentType.HUMAN


def test_check_capacity_verdicts():
    assert check_agent_capacity(None).reason == "Agent not found"

    full = check_agent_capacity(make_agent("full", capacity=2, load=2))
    assert full.can_accept is False
    assert "at capacity" in full.reason
    assert full.at_capacity is True
    assert "2/2" in full.reason

    inactive = check_agent_capacity(make_agent("off", status=schemas.AgentStatus.INACTIVE))
    assert inactive.can_accept is False
    assert inactive.at_capacity is False

    free = check_agent_capacity(make_agent("free", capacity=3, load=1))
    assert free.can_accept is True
    assert "1/3" in free.reason


def test_zero_capacity_agent_never_accepts():
    agent = make_agent("zero", capacity=0)

    assert check_agent_capacity(agent).can_accept is False
    assert agent.utilization == 1.0


def test_ranking_prefers_lowest_utilization_then_load_then_id():
    busy = make_agent("busy", capacity=10, load=8)
    light = make_agent("light", capacity=10, load=1)
    lighter_big = make_agent("lighter-big", capacity=100, load=5)
    twin_b = make_agent("twin-b", capacity=10, load=1)

    ranked = rank_available_agents([busy, twin_b, light, lighter_big])

    assert [a.id for a in ranked] == ["lighter-big", "light", "twin-b", "busy"]


def test_ranking_prefers_humans_for_support():
    ai = make_agent("ai", load=0)
    human = make_agent("human", type=HUMAN, load=5)

    assert rank_available_agents([ai, human], category="support")[0].id == "human"
    assert rank_available_agents([ai, human], category="sales")[0].id == "ai"


def test_ranking_respects_tags_and_exclusions():
    tagged = make_agent("tagged", tags=["Billing"])
    generalist = make_agent("generalist", load=3)
    full = make_agent("full", capacity=1, load=1)

    ranked = rank_available_agents([tagged, generalist, full], category="billing")
    assert [a.id for a in ranked] == ["tagged", "generalist"]

    assert [a.id for a in rank_available_agents([tagged, generalist], category="sales")] == [
        "generalist"
    ]
    assert rank_available_agents([tagged, generalist], exclude=["generalist"])[0].id == "tagged"


def test_oldest_ai_agent_ignores_humans_and_inactive():
    older_human = make_agent("human", type=HUMAN, created_at=WEDNESDAY_MORNING - timedelta(days=9))
    old_inactive = make_agent(
        "old-ai",
        status=schemas.AgentStatus.INACTIVE,
        created_at=WEDNESDAY_MORNING - timedelta(days=5),
    )
    young = make_agent("young-ai", created_at=WEDNESDAY_MORNING)
    mid = make_agent("mid-ai", load=100, capacity=100, created_at=WEDNESDAY_MORNING - timedelta(days=1))

    assert pick_oldest_ai_agent([older_human, old_inactive, young, mid]).id == "mid-ai"
    assert pick_oldest_ai_agent([older_human]) is None


def test_candidate_with_capacity_is_kept(store):
    store.save_agent(make_agent("target", load=1))

    choice = CapacityAwareDispatcher(store).resolve_agent("target", OWNER)

    assert choice.agent_id == "target"
    assert "available" in choice.reason


def test_full_candidate_is_reassigned(store):
    store.save_agent(make_agent("target", capacity=1, load=1))
    store.save_agent(make_agent("spare"))

    choice = CapacityAwareDispatcher(store).resolve_agent("target", OWNER)

    assert choice.agent_id == "spare"
    assert choice.reason == REASSIGNED_REASON
    assert "reassigned" in choice.reason


@pytest.mark.parametrize(
    ("saved", "cause"),
    [
        (None, "Agent not found"),
        (make_agent("target", status=schemas.AgentStatus.INACTIVE), "Agent is inactive"),
    ],
)
def test_unavailable_candidate_reason_names_the_cause(store, saved, cause):
    if saved is not None:
        store.save_agent(saved)
    store.save_agent(make_agent("spare"))

    choice = CapacityAwareDispatcher(store).resolve_agent("target", OWNER)

    assert choice.agent_id == "spare"
    assert choice.reason == f"reassigned: {cause}"
    assert "at capacity" not in choice.reason


def test_full_everyone_uses_default_ai_agent(store):
    store.save_agent(make_agent("target", type=HUMAN, capacity=1, load=1))
    store.save_agent(
        make_agent("default-ai", capacity=1, load=1, created_at=WEDNESDAY_MORNING - timedelta(days=1))
    )

    choice = CapacityAwareDispatcher(store).resolve_agent("target", OWNER)

    assert choice.agent_id == "default-ai"
    assert choice.reason == DEFAULT_REASON


def test_excluded_candidate_is_not_rechecked(store):
    store.save_agent(make_agent("target"))
    store.save_agent(make_agent("other", load=4))

    choice = CapacityAwareDispatcher(store).resolve_agent("target", OWNER, exclude=["target"])

    assert choice.agent_id == "other"


def test_no_ai_agent_raises(store):
    store.save_agent(make_agent("human", type=HUMAN, capacity=1, load=1))

    with pytest.raises(NoAvailableAgentError):
        CapacityAwareDispatcher(store).resolve_agent("human", OWNER)

    with pytest.raises(NoAvailableAgentError):
        DefaultAssignmentFallback(store).default_agent(OWNER)


def test_capacity_lookup_failure_keeps_candidate(store, monkeypatch):
    def _explode(agent_id, owner_id):
        raise ConnectionError("directory offline")

    monkeypatch.setattr(store, "check_capacity", _explode)

    choice = CapacityAwareDispatcher(store).resolve_agent("target", OWNER)

    assert choice.agent_id == "target"
    assert choice.reason == "capacity unchecked"
