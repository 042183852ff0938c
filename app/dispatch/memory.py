"""In-process implementation of every dispatch store protocol.

Used by the test-suite and for local development without a database. All
state lives behind one re-entrant lock; :meth:`InMemoryDispatchStore.transaction`
holds it for the duration of a commit and rolls every collection back when
the commit raises, so the committer's steps apply as one unit.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from . import schemas
from .business_hours import is_open, summarize_queue
from .capacity import check_agent_capacity, pick_oldest_ai_agent, rank_available_agents


class InMemoryDispatchStore:
    """Dictionary-backed store keyed by owner-scoped identifiers."""

    _STATE = (
        "agents",
        "assignment_rules",
        "classification_rules",
        "business_hours",
        "conversations",
        "assignments",
        "queue",
    )

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.agents: Dict[str, schemas.Agent] = {}
        self.assignment_rules: Dict[str, schemas.AssignmentRule] = {}
        self.classification_rules: Dict[str, schemas.ClassificationRule] = {}
        self.business_hours: Dict[str, schemas.BusinessHours] = {}
        self.conversations: Dict[tuple[str, str], schemas.Conversation] = {}
        self.assignments: List[schemas.Assignment] = []
        self.queue: List[schemas.QueuedMessage] = []

    # Rules -----------------------------------------------------------------
    def list_active_classification_rules(
        self, owner_id: str
    ) -> List[schemas.ClassificationRule]:
        rules = [r for r in self.list_classification_rules(owner_id) if r.active]
        return sorted(rules, key=lambda r: (r.rank, r.created_at, r.id))

    def list_active_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]:
        rules = [r for r in self.list_assignment_rules(owner_id) if r.active]
        return sorted(rules, key=lambda r: (r.priority, r.created_at, r.id))

    def list_classification_rules(self, owner_id: str) -> List[schemas.ClassificationRule]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self.classification_rules.values()
                if r.owner_id == owner_id
            ]

    def list_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for r in self.assignment_rules.values()
                if r.owner_id == owner_id
            ]

    def get_classification_rule(
        self, rule_id: str, owner_id: str
    ) -> Optional[schemas.ClassificationRule]:
        with self._lock:
            rule = self.classification_rules.get(rule_id)
            if rule is None or rule.owner_id != owner_id:
                return None
            return rule.model_copy(deep=True)

    def get_assignment_rule(
        self, rule_id: str, owner_id: str
    ) -> Optional[schemas.AssignmentRule]:
        with self._lock:
            rule = self.assignment_rules.get(rule_id)
            if rule is None or rule.owner_id != owner_id:
                return None
            return rule.model_copy(deep=True)

    def save_classification_rule(
        self, rule: schemas.ClassificationRule
    ) -> schemas.ClassificationRule:
        with self._lock:
            self.classification_rules[rule.id] = rule.model_copy(deep=True)
        return rule

    def save_assignment_rule(self, rule: schemas.AssignmentRule) -> schemas.AssignmentRule:
        with self._lock:
            self.assignment_rules[rule.id] = rule.model_copy(deep=True)
        return rule

    def delete_classification_rule(self, rule_id: str, owner_id: str) -> bool:
        with self._lock:
            rule = self.classification_rules.get(rule_id)
            if rule is None or rule.owner_id != owner_id:
                return False
            del self.classification_rules[rule_id]
            return True

    def delete_assignment_rule(self, rule_id: str, owner_id: str) -> bool:
        with self._lock:
            rule = self.assignment_rules.get(rule_id)
            if rule is None or rule.owner_id != owner_id:
                return False
            del self.assignment_rules[rule_id]
            return True

    # Agents ----------------------------------------------------------------
    def get_agent(self, agent_id: str, owner_id: str) -> Optional[schemas.Agent]:
        with self._lock:
            agent = self.agents.get(agent_id)
            if agent is None or agent.owner_id != owner_id:
                return None
            return agent.model_copy(deep=True)

    def list_agents(self, owner_id: str) -> List[schemas.Agent]:
        with self._lock:
            agents = [
                a.model_copy(deep=True) for a in self.agents.values() if a.owner_id == owner_id
            ]
        return sorted(agents, key=lambda a: (a.created_at, a.id))

    def save_agent(self, agent: schemas.Agent) -> schemas.Agent:
        with self._lock:
            self.agents[agent.id] = agent.model_copy(deep=True)
        return agent

    def check_capacity(self, agent_id: str, owner_id: str) -> schemas.CapacityCheck:
        return check_agent_capacity(self.get_agent(agent_id, owner_id))

    def find_available_agent(
        self,
        owner_id: str,
        category: Optional[str] = None,
        platform: Optional[str] = None,
        *,
        exclude: tuple[str, ...] = (),
    ) -> Optional[schemas.Agent]:
        ranked = rank_available_agents(
            self.list_agents(owner_id), category, platform, exclude=exclude
        )
        return ranked[0] if ranked else None

    def oldest_active_ai_agent(self, owner_id: str) -> Optional[schemas.Agent]:
        return pick_oldest_ai_agent(self.list_agents(owner_id))

    def reserve_capacity(self, agent_id: str, owner_id: str, *, enforce: bool = True) -> bool:
        with self._lock:
            agent = self.agents.get(agent_id)
            if agent is None or agent.owner_id != owner_id:
                return False
            if enforce and (
                agent.status != schemas.AgentStatus.ACTIVE or not agent.has_capacity
            ):
                return False
            agent.current_load += 1
            return True

    def release_capacity(self, agent_id: str, owner_id: str) -> None:
        with self._lock:
            agent = self.agents.get(agent_id)
            if agent is not None and agent.owner_id == owner_id and agent.current_load > 0:
                agent.current_load -= 1

    # Business hours --------------------------------------------------------
    def get_business_hours(self, owner_id: str) -> Optional[schemas.BusinessHours]:
        with self._lock:
            hours = self.business_hours.get(owner_id)
            return hours.model_copy(deep=True) if hours else None

    def set_business_hours(self, hours: schemas.BusinessHours) -> schemas.BusinessHours:
        with self._lock:
            self.business_hours[hours.owner_id] = hours.model_copy(deep=True)
        return hours

    def is_within_business_hours(self, owner_id: str, instant: datetime) -> bool:
        hours = self.get_business_hours(owner_id)
        if hours is None:
            return True
        return is_open(hours, instant)

    # Queue -----------------------------------------------------------------
    def enqueue(self, message: schemas.QueuedMessage) -> None:
        with self._lock:
            self.queue.append(message.model_copy(deep=True))

    def queue_status(self, owner_id: str) -> schemas.QueueStatus:
        with self._lock:
            pending = [
                m.queued_at
                for m in self.queue
                if m.owner_id == owner_id and m.status == "queued"
            ]
        return summarize_queue(pending)

    # Conversations ---------------------------------------------------------
    def get_conversation(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Conversation]:
        with self._lock:
            conversation = self.conversations.get((owner_id, conversation_id))
            return conversation.model_copy(deep=True) if conversation else None

    def upsert_conversation_if_missing(
        self, conversation_id: str, owner_id: str, defaults: Dict[str, Any]
    ) -> None:
        with self._lock:
            key = (owner_id, conversation_id)
            if key not in self.conversations:
                self.conversations[key] = schemas.Conversation(
                    id=conversation_id, owner_id=owner_id, **defaults
                )

    def update_assigned_agent(
        self, conversation_id: str, owner_id: str, agent_id: str, agent_name: str
    ) -> None:
        with self._lock:
            conversation = self.conversations.get((owner_id, conversation_id))
            if conversation is None:
                return
            conversation.assigned_agent_id = agent_id
            conversation.assigned_agent_name = agent_name
            conversation.updated_at = datetime.now(timezone.utc)

    # Assignments -----------------------------------------------------------
    @contextmanager
    def transaction(self, conversation_id: str) -> Iterator[None]:
        """Hold the store lock and restore every collection if the block raises."""

        with self._lock:
            snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
            try:
                yield
            except Exception:
                for name, value in snapshot.items():
                    setattr(self, name, value)
                raise

    def get_active_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]:
        with self._lock:
            for assignment in self.assignments:
                if (
                    assignment.conversation_id == conversation_id
                    and assignment.owner_id == owner_id
                    and assignment.status == schemas.AssignmentStatus.ACTIVE
                ):
                    return assignment.model_copy()
        return None

    def deactivate_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]:
        previous: Optional[schemas.Assignment] = None
        with self._lock:
            for assignment in self.assignments:
                if (
                    assignment.conversation_id == conversation_id
                    and assignment.owner_id == owner_id
                    and assignment.status == schemas.AssignmentStatus.ACTIVE
                ):
                    assignment.status = schemas.AssignmentStatus.INACTIVE
                    previous = assignment.model_copy()
        return previous

    def insert_assignment(self, assignment: schemas.Assignment) -> schemas.Assignment:
        with self._lock:
            if assignment.status == schemas.AssignmentStatus.ACTIVE and self.get_active_assignment(
                assignment.conversation_id, assignment.owner_id
            ):
                raise ValueError(
                    f"conversation {assignment.conversation_id} already has an active assignment"
                )
            self.assignments.append(assignment.model_copy())
        return assignment

    def list_assignments(
        self, conversation_id: str, owner_id: str
    ) -> List[schemas.Assignment]:
        with self._lock:
            rows = [
                a.model_copy()
                for a in self.assignments
                if a.conversation_id == conversation_id and a.owner_id == owner_id
            ]
        return sorted(rows, key=lambda a: a.created_at)

    def active_assignment_count(self, conversation_id: str) -> int:
        with self._lock:
            return sum(
                1
                for a in self.assignments
                if a.conversation_id == conversation_id
                and a.status == schemas.AssignmentStatus.ACTIVE
            )


__all__ = ["InMemoryDispatchStore"]
