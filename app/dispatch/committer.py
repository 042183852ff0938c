"""Single-writer assignment state transition.

Per conversation the assignment moves ``NONE -> ACTIVE -> INACTIVE -> ACTIVE``.
Every transition for one conversation goes through the same serialization
point: an in-process lock keyed by conversation id plus the store's
transaction, which on PostgreSQL also holds a transaction-scoped advisory
lock. At most one ``active`` assignment exists per conversation.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict

from .errors import CapacityConflict
from .events import BackgroundEmitter
from .schemas import AgentType, Assignment, AssignmentStatus
from .stores import AgentDirectory, AssignmentStore, ConversationStore

logger = logging.getLogger(__name__)

CONVERSATION_DEFAULTS = {"status": "active", "priority": "medium"}


class ConversationLocks:
    """Reference-counted registry of per-conversation mutexes.

    Locks are created on first use and dropped once no thread holds or waits
    for them, so the registry does not grow with the number of conversations.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


@dataclass
class CommitOutcome:
    assignment: Assignment
    created: bool


class AssignmentCommitter:
    """Persist dispatch decisions as assignment rows."""

    def __init__(
        self,
        assignments: AssignmentStore,
        conversations: ConversationStore,
        directory: AgentDirectory,
        *,
        locks: ConversationLocks | None = None,
        emitter: BackgroundEmitter | None = None,
    ) -> None:
        self._assignments = assignments
        self._conversations = conversations
        self._directory = directory
        self._locks = locks or ConversationLocks()
        self._emitter = emitter

    @property
    def locks(self) -> ConversationLocks:
        return self._locks

    def commit(
        self,
        conversation_id: str,
        owner_id: str,
        agent_id: str,
        agent_type: AgentType,
        agent_name: str,
        reason: str,
        *,
        enforce_capacity: bool = True,
    ) -> CommitOutcome:
        """Create the first active assignment; a no-op when one already exists."""

        return self._transition(
            conversation_id,
            owner_id,
            agent_id,
            agent_type,
            agent_name,
            reason,
            replace=False,
            enforce_capacity=enforce_capacity,
        )

    def reassign(
        self,
        conversation_id: str,
        owner_id: str,
        agent_id: str,
        agent_type: AgentType,
        agent_name: str,
        reason: str,
    ) -> CommitOutcome:
        """Supersede the active assignment with one for ``agent_id``."""

        return self._transition(
            conversation_id,
            owner_id,
            agent_id,
            agent_type,
            agent_name,
            reason,
            replace=True,
            enforce_capacity=False,
        )

    def _transition(
        self,
        conversation_id: str,
        owner_id: str,
        agent_id: str,
        agent_type: AgentType,
        agent_name: str,
        reason: str,
        *,
        replace: bool,
        enforce_capacity: bool,
    ) -> CommitOutcome:
        with self._locks.hold(conversation_id):
            with self._assignments.transaction(conversation_id):
                existing = self._assignments.get_active_assignment(conversation_id, owner_id)
                if existing is not None and (not replace or existing.agent_id == agent_id):
                    logger.info(
                        "Conversation %s already assigned to %s; skipping",
                        conversation_id,
                        existing.agent_name,
                        extra={"owner_id": owner_id, "conversation_id": conversation_id},
                    )
                    return CommitOutcome(assignment=existing, created=False)

                if enforce_capacity:
                    if not self._directory.reserve_capacity(agent_id, owner_id):
                        raise CapacityConflict(agent_id)
                else:
                    # Every active assignment holds one unit of load, even past the limit.
                    self._directory.reserve_capacity(agent_id, owner_id, enforce=False)

                self._conversations.upsert_conversation_if_missing(
                    conversation_id, owner_id, dict(CONVERSATION_DEFAULTS)
                )
                previous = self._assignments.deactivate_assignment(conversation_id, owner_id)
                if previous is not None:
                    self._directory.release_capacity(previous.agent_id, owner_id)
                assignment = self._assignments.insert_assignment(
                    Assignment(
                        conversation_id=conversation_id,
                        owner_id=owner_id,
                        agent_id=agent_id,
                        agent_type=agent_type,
                        agent_name=agent_name,
                        reason=reason,
                        status=AssignmentStatus.ACTIVE,
                    )
                )
                self._conversations.update_assigned_agent(
                    conversation_id, owner_id, agent_id, agent_name
                )

        logger.info(
            "Assignment created: %s assigned to conversation %s (%s)",
            agent_name,
            conversation_id,
            reason,
            extra={"owner_id": owner_id, "conversation_id": conversation_id},
        )
        self._emit(assignment, previous)
        return CommitOutcome(assignment=assignment, created=True)

    def _emit(self, assignment: Assignment, previous: Assignment | None) -> None:
        if self._emitter is None:
            return
        try:
            self._emitter.emit(
                "conversation_assigned",
                {
                    "owner_id": assignment.owner_id,
                    "conversation_id": assignment.conversation_id,
                    "agent_id": assignment.agent_id,
                    "agent_type": assignment.agent_type.value,
                    "reason": assignment.reason,
                    "previous_agent_id": previous.agent_id if previous else None,
                },
            )
        except Exception:
            logger.warning("Failed to schedule assignment analytics", exc_info=True)


__all__ = [
    "AssignmentCommitter",
    "CONVERSATION_DEFAULTS",
    "CommitOutcome",
    "ConversationLocks",
]
