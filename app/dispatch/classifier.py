"""Intent classification for inbound customer messages.

Two deterministic classifiers run side by side:

- the owner's custom keyword rules, scanned in ``rank`` order where the first
  rule with any keyword hit wins;
- a fixed set of built-in templates scored by keyword and regex hits.

The custom result wins when its confidence reaches ``RULE_ACCEPT_THRESHOLD``.
When an AI completion oracle is configured and the outcome is still weak, the
oracle gets a chance to override it. Classification never raises: any
unexpected failure returns :data:`FALLBACK_CLASSIFICATION`.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Pattern, Sequence

from .oracle import IntentOracle
from .schemas import (
    ClassificationRule,
    ClassificationSource,
    IntentCategory,
    IntentClassification,
    LeadPriority,
    Turn,
    Urgency,
)
from .stores import RuleStore

logger = logging.getLogger(__name__)

RULE_ACCEPT_THRESHOLD = 60
RULE_CONFIDENCE_CAP = 90
BUILTIN_CONFIDENCE_CAP = 85
CONTEXT_BOOST = 5
CONTEXT_WINDOW = 3


@dataclass(frozen=True)
class IntentTemplate:
    name: str
    keywords: tuple[str, ...]
    patterns: tuple[Pattern[str], ...]
    category: IntentCategory
    priority: LeadPriority
    urgency: Urgency


BUILT_IN_INTENTS: tuple[IntentTemplate, ...] = (
    IntentTemplate(
        name="sales",
        keywords=(
            "price", "cost", "buy", "purchase", "quote",
            "demo", "trial", "interested", "pricing", "plan",
        ),
        patterns=(
            re.compile(r"how much", re.I),
            re.compile(r"what.*cost", re.I),
            re.compile(r"can i buy", re.I),
            re.compile(r"interested in", re.I),
        ),
        category=IntentCategory.ACQUISITION,
        priority=LeadPriority.HOT,
        urgency=Urgency.HIGH,
    ),
    IntentTemplate(
        name="support",
        keywords=(
            "help", "problem", "issue", "bug",
            "error", "broken", "not working", "support",
        ),
        patterns=(
            re.compile(r"not work", re.I),
            re.compile(r"having trouble", re.I),
            re.compile(r"need help", re.I),
            re.compile(r"can't", re.I),
        ),
        category=IntentCategory.SUPPORT,
        priority=LeadPriority.WARM,
        urgency=Urgency.MEDIUM,
    ),
    IntentTemplate(
        name="billing",
        keywords=("bill", "invoice", "payment", "charge", "refund", "subscription", "cancel"),
        patterns=(
            re.compile(r"billing issue", re.I),
            re.compile(r"payment problem", re.I),
            re.compile(r"want to cancel", re.I),
        ),
        category=IntentCategory.RETENTION,
        priority=LeadPriority.HOT,
        urgency=Urgency.HIGH,
    ),
    IntentTemplate(
        name="general",
        keywords=("hello", "hi", "info", "question", "about"),
        patterns=(
            re.compile(r"just wondering", re.I),
            re.compile(r"quick question", re.I),
        ),
        category=IntentCategory.ENGAGEMENT,
        priority=LeadPriority.WARM,
        urgency=Urgency.LOW,
    ),
)

FALLBACK_CLASSIFICATION = IntentClassification(
    intent="general",
    confidence=50,
    category=IntentCategory.ENGAGEMENT,
    priority=LeadPriority.WARM,
    urgency=Urgency.MEDIUM,
    reasoning="Default classification due to error",
    source=ClassificationSource.FALLBACK,
)


def _clamp(value: int) -> int:
    return max(0, min(100, int(value)))


@dataclass
class _Scored:
    intent: str
    confidence: int
    category: IntentCategory
    priority: LeadPriority
    urgency: Urgency
    source: ClassificationSource
    matches: list[str] = field(default_factory=list)
    reasoning: str = ""

    def to_classification(self) -> IntentClassification:
        return IntentClassification(
            intent=self.intent,
            confidence=_clamp(self.confidence),
            category=self.category,
            priority=self.priority,
            urgency=self.urgency,
            reasoning=self.reasoning or None,
            source=self.source,
        )


def apply_custom_rules(
    content: str, rules: Sequence[ClassificationRule]
) -> Optional[_Scored]:
    message = content.lower()
    for rule in sorted(rules, key=lambda r: (r.rank, r.created_at, r.id)):
        if not rule.active:
            continue
        matches = [kw for kw in rule.keywords if kw and kw.lower() in message]
        if not matches:
            continue
        confidence = min(
            RULE_CONFIDENCE_CAP, 60 + 10 * len(matches) + rule.confidence_boost
        )
        return _Scored(
            intent=rule.intent,
            confidence=confidence,
            category=rule.category,
            priority=rule.priority,
            urgency=rule.urgency,
            source=ClassificationSource.RULE,
            matches=matches,
            reasoning=f'Matched custom rule "{rule.name}" with keywords: {", ".join(matches)}',
        )
    return None


def apply_builtin_templates(content: str) -> _Scored:
    message = content.lower()
    best = _Scored(
        intent="general",
        confidence=30,
        category=IntentCategory.ENGAGEMENT,
        priority=LeadPriority.WARM,
        urgency=Urgency.MEDIUM,
        source=ClassificationSource.BUILTIN,
        reasoning="No built-in pattern matched",
    )
    for template in BUILT_IN_INTENTS:
        matches = [kw for kw in template.keywords if kw in message]
        score = len(matches)
        for pattern in template.patterns:
            if pattern.search(message):
                score += 2
                matches.append(f"pattern: {pattern.pattern}")
        if score == 0:
            continue
        confidence = min(BUILTIN_CONFIDENCE_CAP, 50 + 15 * score)
        if confidence > best.confidence:
            best = _Scored(
                intent=template.name,
                confidence=confidence,
                category=template.category,
                priority=template.priority,
                urgency=template.urgency,
                source=ClassificationSource.BUILTIN,
                matches=matches,
                reasoning=f"Built-in classification matched: {', '.join(matches)}",
            )
    return best


def contextual_boost(history: Optional[Sequence[Turn]]) -> int:
    if not history:
        return 0
    recent = list(history)[-CONTEXT_WINDOW:]
    has_exchange = len(recent) > 1
    has_agent_turn = any(turn.role == "agent" for turn in recent)
    return CONTEXT_BOOST if has_exchange and has_agent_turn else 0


class IntentClassifier:
    """Combine custom rules, built-in templates and an optional oracle."""

    def __init__(
        self,
        rules: RuleStore,
        *,
        oracle: IntentOracle | None = None,
        oracle_threshold: int = 40,
    ) -> None:
        self._rules = rules
        self._oracle = oracle
        self._oracle_threshold = oracle_threshold

    def classify_intent(
        self,
        content: str | None,
        owner_id: str,
        history: Optional[Sequence[Turn]] = None,
    ) -> IntentClassification:
        try:
            result = self._classify(content or "", owner_id, history)
        except Exception:
            logger.exception("Intent classification failed for owner %s", owner_id)
            return FALLBACK_CLASSIFICATION.model_copy()
        logger.debug(
            "Classified intent %s (%s%% via %s)",
            result.intent,
            result.confidence,
            result.source.value,
        )
        return result

    def _classify(
        self, content: str, owner_id: str, history: Optional[Sequence[Turn]]
    ) -> IntentClassification:
        rule_result = apply_custom_rules(content, self._load_rules(owner_id))
        builtin_result = apply_builtin_templates(content)

        boost = contextual_boost(history)
        builtin_result.confidence += boost
        if rule_result is not None:
            rule_result.confidence += boost

        if rule_result is not None and rule_result.confidence >= RULE_ACCEPT_THRESHOLD:
            chosen = rule_result
        else:
            chosen = builtin_result

        classification = chosen.to_classification()
        if self._oracle is not None and classification.confidence < self._oracle_threshold:
            escalated = self._escalate(content, history)
            if escalated is not None:
                return escalated
        return classification

    def _load_rules(self, owner_id: str) -> list[ClassificationRule]:
        try:
            return list(self._rules.list_active_classification_rules(owner_id))
        except Exception:
            logger.warning(
                "Classification rules unavailable for owner %s; using built-ins only",
                owner_id,
                exc_info=True,
            )
            return []

    def _escalate(
        self, content: str, history: Optional[Sequence[Turn]]
    ) -> Optional[IntentClassification]:
        if not content.strip():
            return None
        try:
            return self._oracle.classify(content, history or [])
        except Exception as exc:
            logger.warning("Intent oracle failed: %s", exc)
            return None


__all__ = [
    "BUILT_IN_INTENTS",
    "FALLBACK_CLASSIFICATION",
    "IntentClassifier",
    "IntentTemplate",
    "apply_builtin_templates",
    "apply_custom_rules",
    "contextual_boost",
]
