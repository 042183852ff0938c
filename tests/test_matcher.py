"""Tests for assignment rule matching."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from app.dispatch import schemas
from app.dispatch.matcher import MatchContext, conditions_hold, match_rule, sort_rules

from conftest import OWNER, WEDNESDAY_MORNING


def _rule(name: str, priority: int, **conditions) -> schemas.AssignmentRule:
    return schemas.AssignmentRule(
        id=name,
        owner_id=OWNER,
        name=name,
        trigger_conditions=schemas.TriggerConditions(**conditions),
        target_agent_id=f"agent-{name}",
        priority=priority,
        created_at=WEDNESDAY_MORNING,
    )


def _context(
    platform: str = "whatsapp",
    category: str | None = "acquisition",
    content: str | None = "hello",
    instant: datetime = WEDNESDAY_MORNING,
) -> MatchContext:
    return MatchContext(
        platform=platform, category=category, message_content=content, instant=instant
    )


def test_lower_priority_number_wins_even_when_broader():
    broad = _rule("r1", 1, platform="whatsapp")
    narrow = _rule("r2", 2, platform="whatsapp", category="acquisition")

    matched = match_rule([narrow, broad], _context())

    assert matched is not None
    assert matched.id == "r1"


def test_ties_break_on_creation_time():
    first = _rule("first", 5)
    second = _rule("second", 5).model_copy(
        update={"created_at": WEDNESDAY_MORNING + timedelta(minutes=1)}
    )

    assert [r.id for r in sort_rules([second, first])] == ["first", "second"]


def test_inactive_rules_never_match():
    rule = _rule("off", 1).model_copy(update={"active": False})
    assert match_rule([rule], _context()) is None


def test_no_rules_returns_none():
    assert match_rule([], _context()) is None


def test_empty_conditions_match_everything():
    assert conditions_hold(schemas.TriggerConditions(), _context(category=None, content=None))


@pytest.mark.parametrize(
    ("conditions", "context", "expected"),
    [
        ({"platform": "telegram"}, _context(), False),
        ({"category": "support"}, _context(), False),
        ({"category": "support"}, _context(category=None), False),
        ({"keywords": ["Refund"]}, _context(content="I want a REFUND"), True),
        ({"keywords": ["refund"]}, _context(content="hello"), False),
        ({"keywords": ["refund"]}, _context(content=None), False),
        ({"keywords": []}, _context(content=None), True),
    ],
)
def test_individual_conditions(conditions, context, expected):
    assert conditions_hold(schemas.TriggerConditions(**conditions), context) is expected


@pytest.mark.parametrize(
    ("hour", "expected"),
    [(8, False), (9, True), (17, True), (18, False)],
)
def test_time_of_day_window_is_inclusive_by_hour(hour, expected):
    conditions = schemas.TriggerConditions(time_of_day={"start": "09:00", "end": "17"})
    instant = WEDNESDAY_MORNING.replace(hour=hour, minute=59)

    assert conditions_hold(conditions, _context(instant=instant)) is expected


def test_day_of_week_uses_sunday_zero():
    weekend = schemas.TriggerConditions(day_of_week=[0, 6])
    midweek = schemas.TriggerConditions(day_of_week=[3])
    sunday = datetime(2024, 5, 19, 12, 0, tzinfo=timezone.utc)

    assert conditions_hold(weekend, _context(instant=sunday))
    assert not conditions_hold(weekend, _context())
    assert conditions_hold(midweek, _context())


def test_all_conditions_must_hold():
    rule = _rule(
        "combo",
        1,
        platform="whatsapp",
        category="acquisition",
        keywords=["price"],
        day_of_week=[3],
    )

    assert match_rule([rule], _context(content="what is the price?")) is not None
    assert match_rule([rule], _context(content="hello")) is None


def test_invalid_conditions_are_rejected():
    with pytest.raises(ValueError):
        schemas.TriggerConditions(day_of_week=[7])
    with pytest.raises(ValueError):
        schemas.TriggerConditions(time_of_day={"start": "25", "end": "26"})
    with pytest.raises(ValueError):
        schemas.TriggerConditions(unknown="x")
