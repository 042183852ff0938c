"""Owner-facing management of rules, agents and business hours."""

from __future__ import annotations

import logging
from typing import List

from . import schemas
from .errors import NotFoundError
from .stores import DispatchStore

logger = logging.getLogger(__name__)


class DispatchAdminService:
    """CRUD operations over the configuration the dispatcher reads."""

    def __init__(self, store: DispatchStore) -> None:
        self._store = store

    # Assignment rules ------------------------------------------------------
    def list_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]:
        rules = self._store.list_assignment_rules(owner_id)
        return sorted(rules, key=lambda r: (r.priority, r.created_at, r.id))

    def get_assignment_rule(self, rule_id: str, owner_id: str) -> schemas.AssignmentRule:
        rule = self._store.get_assignment_rule(rule_id, owner_id)
        if rule is None:
            raise NotFoundError(f"Assignment rule {rule_id} not found")
        return rule

    def create_assignment_rule(
        self, owner_id: str, payload: schemas.AssignmentRuleCreate
    ) -> schemas.AssignmentRule:
        self._require_agent(payload.target_agent_id, owner_id)
        rule = schemas.AssignmentRule(owner_id=owner_id, **payload.model_dump())
        saved = self._store.save_assignment_rule(rule)
        logger.info("Created assignment rule %s for owner %s", saved.name, owner_id)
        return saved

    def update_assignment_rule(
        self, rule_id: str, owner_id: str, payload: schemas.AssignmentRuleUpdate
    ) -> schemas.AssignmentRule:
        rule = self.get_assignment_rule(rule_id, owner_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        if "target_agent_id" in changes:
            self._require_agent(changes["target_agent_id"], owner_id)
        if payload.trigger_conditions is not None:
            changes["trigger_conditions"] = payload.trigger_conditions
        return self._store.save_assignment_rule(rule.model_copy(update=changes))

    def delete_assignment_rule(self, rule_id: str, owner_id: str) -> None:
        if not self._store.delete_assignment_rule(rule_id, owner_id):
            raise NotFoundError(f"Assignment rule {rule_id} not found")

    # Classification rules --------------------------------------------------
    def list_classification_rules(self, owner_id: str) -> List[schemas.ClassificationRule]:
        rules = self._store.list_classification_rules(owner_id)
        return sorted(rules, key=lambda r: (r.rank, r.created_at, r.id))

    def get_classification_rule(
        self, rule_id: str, owner_id: str
    ) -> schemas.ClassificationRule:
        rule = self._store.get_classification_rule(rule_id, owner_id)
        if rule is None:
            raise NotFoundError(f"Classification rule {rule_id} not found")
        return rule

    def create_classification_rule(
        self, owner_id: str, payload: schemas.ClassificationRuleCreate
    ) -> schemas.ClassificationRule:
        rule = schemas.ClassificationRule(owner_id=owner_id, **payload.model_dump())
        saved = self._store.save_classification_rule(rule)
        logger.info("Created classification rule %s for owner %s", saved.name, owner_id)
        return saved

    def update_classification_rule(
        self, rule_id: str, owner_id: str, payload: schemas.ClassificationRuleUpdate
    ) -> schemas.ClassificationRule:
        rule = self.get_classification_rule(rule_id, owner_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        return self._store.save_classification_rule(rule.model_copy(update=changes))

    def delete_classification_rule(self, rule_id: str, owner_id: str) -> None:
        if not self._store.delete_classification_rule(rule_id, owner_id):
            raise NotFoundError(f"Classification rule {rule_id} not found")

    # Agents ----------------------------------------------------------------
    def list_agents(self, owner_id: str) -> List[schemas.Agent]:
        return self._store.list_agents(owner_id)

    def create_agent(self, owner_id: str, payload: schemas.AgentCreate) -> schemas.Agent:
        agent = schemas.Agent(owner_id=owner_id, **payload.model_dump())
        saved = self._store.save_agent(agent)
        logger.info("Registered %s agent %s for owner %s", saved.type.value, saved.name, owner_id)
        return saved

    def get_agent(self, agent_id: str, owner_id: str) -> schemas.Agent:
        return self._require_agent(agent_id, owner_id)

    def _require_agent(self, agent_id: str, owner_id: str) -> schemas.Agent:
        agent = self._store.get_agent(agent_id, owner_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    # Business hours --------------------------------------------------------
    def get_business_hours(self, owner_id: str) -> schemas.BusinessHours:
        hours = self._store.get_business_hours(owner_id)
        if hours is None:
            raise NotFoundError("Business hours are not configured")
        return hours

    def set_business_hours(
        self, owner_id: str, payload: schemas.BusinessHoursUpdate
    ) -> schemas.BusinessHours:
        hours = schemas.BusinessHours(owner_id=owner_id, **payload.model_dump())
        return self._store.set_business_hours(hours)


__all__ = ["DispatchAdminService"]
