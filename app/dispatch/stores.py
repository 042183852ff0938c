"""Persistence abstractions consumed by the dispatch pipeline.

Each protocol describes one collaborator of the dispatcher. Implementations
must raise :class:`~app.dispatch.errors.DependencyError` when the backing
system is unreachable so the pipeline can decide whether to fail open (reads)
or propagate (critical writes).
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from . import schemas


class RuleStore(Protocol):
    def list_active_classification_rules(
        self, owner_id: str
    ) -> List[schemas.ClassificationRule]: ...

    def list_active_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]: ...

    def list_classification_rules(self, owner_id: str) -> List[schemas.ClassificationRule]: ...

    def list_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]: ...

    def get_classification_rule(
        self, rule_id: str, owner_id: str
    ) -> Optional[schemas.ClassificationRule]: ...

    def get_assignment_rule(
        self, rule_id: str, owner_id: str
    ) -> Optional[schemas.AssignmentRule]: ...

    def save_classification_rule(
        self, rule: schemas.ClassificationRule
    ) -> schemas.ClassificationRule: ...

    def save_assignment_rule(self, rule: schemas.AssignmentRule) -> schemas.AssignmentRule: ...

    def delete_classification_rule(self, rule_id: str, owner_id: str) -> bool: ...

    def delete_assignment_rule(self, rule_id: str, owner_id: str) -> bool: ...


class AgentDirectory(Protocol):
    def get_agent(self, agent_id: str, owner_id: str) -> Optional[schemas.Agent]: ...

    def list_agents(self, owner_id: str) -> List[schemas.Agent]: ...

    def save_agent(self, agent: schemas.Agent) -> schemas.Agent: ...

    def check_capacity(self, agent_id: str, owner_id: str) -> schemas.CapacityCheck: ...

    def find_available_agent(
        self,
        owner_id: str,
        category: Optional[str] = None,
        platform: Optional[str] = None,
        *,
        exclude: tuple[str, ...] = (),
    ) -> Optional[schemas.Agent]: ...

    def oldest_active_ai_agent(self, owner_id: str) -> Optional[schemas.Agent]: ...

    def reserve_capacity(
        self, agent_id: str, owner_id: str, *, enforce: bool = True
    ) -> bool: ...

    def release_capacity(self, agent_id: str, owner_id: str) -> None: ...


class BusinessHoursConfig(Protocol):
    def get_business_hours(self, owner_id: str) -> Optional[schemas.BusinessHours]: ...

    def set_business_hours(self, hours: schemas.BusinessHours) -> schemas.BusinessHours: ...

    def is_within_business_hours(self, owner_id: str, instant: datetime) -> bool: ...


class QueueStore(Protocol):
    def enqueue(self, message: schemas.QueuedMessage) -> None: ...

    def queue_status(self, owner_id: str) -> schemas.QueueStatus: ...


class ConversationStore(Protocol):
    def get_conversation(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Conversation]: ...

    def upsert_conversation_if_missing(
        self, conversation_id: str, owner_id: str, defaults: Dict[str, Any]
    ) -> None: ...

    def update_assigned_agent(
        self, conversation_id: str, owner_id: str, agent_id: str, agent_name: str
    ) -> None: ...


class AssignmentStore(Protocol):
    def transaction(self, conversation_id: str) -> AbstractContextManager[None]:
        """Scope in which the committer's writes land atomically."""
        ...

    def get_active_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]: ...

    def deactivate_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]: ...

    def insert_assignment(self, assignment: schemas.Assignment) -> schemas.Assignment: ...

    def list_assignments(
        self, conversation_id: str, owner_id: str
    ) -> List[schemas.Assignment]: ...


class AnalyticsSink(Protocol):
    def record_event(self, kind: str, payload: Dict[str, Any]) -> None: ...


class DispatchStore(
    RuleStore,
    AgentDirectory,
    BusinessHoursConfig,
    QueueStore,
    ConversationStore,
    AssignmentStore,
    Protocol,
):
    """Convenience protocol for stores that implement every collaborator."""


__all__ = [
    "AgentDirectory",
    "AnalyticsSink",
    "AssignmentStore",
    "BusinessHoursConfig",
    "ConversationStore",
    "DispatchStore",
    "QueueStore",
    "RuleStore",
]
