"""First-match evaluation of assignment rules.

Rules are scanned in ascending ``priority`` order and the first rule whose
conditions all hold wins. A broader rule ranked ahead of a narrower one
shadows it; precedence is by declared number, never by specificity.

The scan is linear in the number of rules, which stays in the tens per
owner. Indexing by platform would be the next step if that changes, and must
keep the same precedence.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from .business_hours import sunday_based_weekday
from .schemas import AssignmentRule, TriggerConditions


@dataclass(frozen=True)
class MatchContext:
    """Facts about the inbound event that rules are evaluated against."""

    platform: str
    category: Optional[str]
    message_content: Optional[str]
    instant: datetime


def sort_rules(rules: Iterable[AssignmentRule]) -> list[AssignmentRule]:
    return sorted(rules, key=lambda rule: (rule.priority, rule.created_at, rule.id))


def conditions_hold(conditions: TriggerConditions, context: MatchContext) -> bool:
    if conditions.platform is not None and conditions.platform != context.platform:
        return False

    if conditions.category is not None and conditions.category.value != context.category:
        return False

    if conditions.keywords:
        content = (context.message_content or "").lower()
        if not any(keyword.lower() in content for keyword in conditions.keywords if keyword):
            return False

    if conditions.time_of_day is not None:
        hour = context.instant.hour
        if hour < conditions.time_of_day.start_hour or hour > conditions.time_of_day.end_hour:
            return False

    if conditions.day_of_week is not None:
        if sunday_based_weekday(context.instant) not in conditions.day_of_week:
            return False

    return True


def match_rule(
    rules: Iterable[AssignmentRule], context: MatchContext
) -> Optional[AssignmentRule]:
    """Return the first active rule, in priority order, whose conditions hold."""

    for rule in sort_rules(rules):
        if not rule.active:
            continue
        if conditions_hold(rule.trigger_conditions, context):
            return rule
    return None


__all__ = ["MatchContext", "conditions_hold", "match_rule", "sort_rules"]
