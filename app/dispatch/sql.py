"""SQLAlchemy implementation of the dispatch store protocols.

Each call opens its own short session unless a :meth:`SqlDispatchStore.transaction`
is active on the current thread, in which case the call joins it. On
PostgreSQL the transaction also takes ``pg_advisory_xact_lock`` keyed by the
conversation id so that commits from separate processes serialize.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, List, Optional, cast

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app import models

from . import schemas
from .business_hours import is_open, summarize_queue
from .capacity import check_agent_capacity, rank_available_agents
from .errors import DependencyError

logger = logging.getLogger(__name__)


def _agent(row: models.Agent) -> schemas.Agent:
    return schemas.Agent.model_validate(row, from_attributes=True)


def _assignment(row: models.Assignment) -> schemas.Assignment:
    return schemas.Assignment.model_validate(row, from_attributes=True)


def _assignment_rule(row: models.AssignmentRule) -> schemas.AssignmentRule:
    return schemas.AssignmentRule.model_validate(row, from_attributes=True)


def _classification_rule(row: models.ClassificationRule) -> schemas.ClassificationRule:
    return schemas.ClassificationRule.model_validate(row, from_attributes=True)


class SqlDispatchStore:
    """Relational store used in production (PostgreSQL) and in tests (SQLite)."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._active: ContextVar[Optional[Session]] = ContextVar(
            f"dispatch_session_{id(self)}", default=None
        )

    # Session handling ------------------------------------------------------
    @contextmanager
    def _session(self) -> Iterator[Session]:
        active = self._active.get()
        if active is not None:
            try:
                yield active
            except SQLAlchemyError as exc:
                raise DependencyError(f"dispatch store failure: {exc}") from exc
            return

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise DependencyError(f"dispatch store failure: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def transaction(self, conversation_id: str) -> Iterator[None]:
        session = self._session_factory()
        token = self._active.set(session)
        try:
            if session.get_bind().dialect.name == "postgresql":
                session.execute(
                    text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
                    {"key": conversation_id},
                )
            yield
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise DependencyError(f"assignment transaction failed: {exc}") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            self._active.reset(token)
            session.close()

    # Rules -----------------------------------------------------------------
    def list_active_classification_rules(
        self, owner_id: str
    ) -> List[schemas.ClassificationRule]:
        stmt = (
            select(models.ClassificationRule)
            .where(
                models.ClassificationRule.owner_id == owner_id,
                models.ClassificationRule.active.is_(True),
            )
            .order_by(
                models.ClassificationRule.rank,
                models.ClassificationRule.created_at,
                models.ClassificationRule.id,
            )
        )
        with self._session() as session:
            return [_classification_rule(row) for row in session.scalars(stmt)]

    def list_active_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]:
        stmt = (
            select(models.AssignmentRule)
            .where(
                models.AssignmentRule.owner_id == owner_id,
                models.AssignmentRule.active.is_(True),
            )
            .order_by(
                models.AssignmentRule.priority,
                models.AssignmentRule.created_at,
                models.AssignmentRule.id,
            )
        )
        with self._session() as session:
            return [_assignment_rule(row) for row in session.scalars(stmt)]

    def list_classification_rules(self, owner_id: str) -> List[schemas.ClassificationRule]:
        stmt = select(models.ClassificationRule).where(
            models.ClassificationRule.owner_id == owner_id
        )
        with self._session() as session:
            return [_classification_rule(row) for row in session.scalars(stmt)]

    def list_assignment_rules(self, owner_id: str) -> List[schemas.AssignmentRule]:
        stmt = select(models.AssignmentRule).where(models.AssignmentRule.owner_id == owner_id)
        with self._session() as session:
            return [_assignment_rule(row) for row in session.scalars(stmt)]

    def get_classification_rule(
        self, rule_id: str, owner_id: str
    ) -> Optional[schemas.ClassificationRule]:
        with self._session() as session:
            row = session.get(models.ClassificationRule, rule_id)
            if row is None or row.owner_id != owner_id:
                return None
            return _classification_rule(row)

    def get_assignment_rule(
        self, rule_id: str, owner_id: str
    ) -> Optional[schemas.AssignmentRule]:
        with self._session() as session:
            row = session.get(models.AssignmentRule, rule_id)
            if row is None or row.owner_id != owner_id:
                return None
            return _assignment_rule(row)

    def save_classification_rule(
        self, rule: schemas.ClassificationRule
    ) -> schemas.ClassificationRule:
        row = models.ClassificationRule(
            id=rule.id,
            owner_id=rule.owner_id,
            name=rule.name,
            intent=rule.intent,
            keywords=list(rule.keywords),
            category=rule.category.value,
            priority=rule.priority.value,
            urgency=rule.urgency.value,
            confidence_boost=rule.confidence_boost,
            rank=rule.rank,
            active=rule.active,
            created_at=rule.created_at,
        )
        with self._session() as session:
            session.merge(row)
        return rule

    def save_assignment_rule(self, rule: schemas.AssignmentRule) -> schemas.AssignmentRule:
        row = models.AssignmentRule(
            id=rule.id,
            owner_id=rule.owner_id,
            name=rule.name,
            trigger_conditions=rule.trigger_conditions.model_dump(mode="json", exclude_none=True),
            target_agent_id=rule.target_agent_id,
            priority=rule.priority,
            active=rule.active,
            created_at=rule.created_at,
        )
        with self._session() as session:
            session.merge(row)
        return rule

    def delete_classification_rule(self, rule_id: str, owner_id: str) -> bool:
        stmt = delete(models.ClassificationRule).where(
            models.ClassificationRule.id == rule_id,
            models.ClassificationRule.owner_id == owner_id,
        )
        with self._session() as session:
            result = cast(CursorResult[Any], session.execute(stmt))
            return result.rowcount > 0

    def delete_assignment_rule(self, rule_id: str, owner_id: str) -> bool:
        stmt = delete(models.AssignmentRule).where(
            models.AssignmentRule.id == rule_id,
            models.AssignmentRule.owner_id == owner_id,
        )
        with self._session() as session:
            result = cast(CursorResult[Any], session.execute(stmt))
            return result.rowcount > 0

    # Agents ----------------------------------------------------------------
    def get_agent(self, agent_id: str, owner_id: str) -> Optional[schemas.Agent]:
        with self._session() as session:
            row = session.get(models.Agent, agent_id)
            if row is None or row.owner_id != owner_id:
                return None
            return _agent(row)

    def list_agents(self, owner_id: str) -> List[schemas.Agent]:
        stmt = (
            select(models.Agent)
            .where(models.Agent.owner_id == owner_id)
            .order_by(models.Agent.created_at, models.Agent.id)
        )
        with self._session() as session:
            return [_agent(row) for row in session.scalars(stmt)]

    def save_agent(self, agent: schemas.Agent) -> schemas.Agent:
        row = models.Agent(
            id=agent.id,
            owner_id=agent.owner_id,
            type=agent.type.value,
            name=agent.name,
            status=agent.status.value,
            capacity_limit=agent.capacity_limit,
            current_load=agent.current_load,
            category_tags=list(agent.category_tags),
            created_at=agent.created_at,
        )
        with self._session() as session:
            session.merge(row)
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
        stmt = select(models.Agent).where(
            models.Agent.owner_id == owner_id,
            models.Agent.status == schemas.AgentStatus.ACTIVE.value,
            models.Agent.current_load < models.Agent.capacity_limit,
        )
        if exclude:
            stmt = stmt.where(models.Agent.id.not_in(exclude))
        with self._session() as session:
            candidates = [_agent(row) for row in session.scalars(stmt)]
        ranked = rank_available_agents(candidates, category, platform, exclude=exclude)
        return ranked[0] if ranked else None

    def oldest_active_ai_agent(self, owner_id: str) -> Optional[schemas.Agent]:
        stmt = (
            select(models.Agent)
            .where(
                models.Agent.owner_id == owner_id,
                models.Agent.type == schemas.AgentType.AI.value,
                models.Agent.status == schemas.AgentStatus.ACTIVE.value,
            )
            .order_by(models.Agent.created_at, models.Agent.id)
            .limit(1)
        )
        with self._session() as session:
            row = session.scalars(stmt).first()
            return _agent(row) if row is not None else None

    def reserve_capacity(self, agent_id: str, owner_id: str, *, enforce: bool = True) -> bool:
        """Increment the agent's load; with ``enforce`` only while it has free capacity."""

        conditions = [models.Agent.id == agent_id, models.Agent.owner_id == owner_id]
        if enforce:
            conditions += [
                models.Agent.status == schemas.AgentStatus.ACTIVE.value,
                models.Agent.current_load < models.Agent.capacity_limit,
            ]
        stmt = (
            update(models.Agent)
            .where(*conditions)
            .values(current_load=models.Agent.current_load + 1)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            result = cast(CursorResult[Any], session.execute(stmt))
            return result.rowcount == 1

    def release_capacity(self, agent_id: str, owner_id: str) -> None:
        stmt = (
            update(models.Agent)
            .where(
                models.Agent.id == agent_id,
                models.Agent.owner_id == owner_id,
                models.Agent.current_load > 0,
            )
            .values(current_load=models.Agent.current_load - 1)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            session.execute(stmt)

    # Business hours --------------------------------------------------------
    def get_business_hours(self, owner_id: str) -> Optional[schemas.BusinessHours]:
        with self._session() as session:
            row = session.get(models.BusinessHours, owner_id)
            if row is None:
                return None
            return schemas.BusinessHours.model_validate(row, from_attributes=True)

    def set_business_hours(self, hours: schemas.BusinessHours) -> schemas.BusinessHours:
        row = models.BusinessHours(
            owner_id=hours.owner_id,
            start=hours.start,
            end=hours.end,
            timezone=hours.timezone,
            days=list(hours.days),
        )
        with self._session() as session:
            session.merge(row)
        return hours

    def is_within_business_hours(self, owner_id: str, instant: datetime) -> bool:
        hours = self.get_business_hours(owner_id)
        if hours is None:
            return True
        return is_open(hours, instant)

    # Queue -----------------------------------------------------------------
    def enqueue(self, message: schemas.QueuedMessage) -> None:
        row = models.QueuedMessage(
            id=message.id,
            conversation_id=message.conversation_id,
            owner_id=message.owner_id,
            platform=message.platform,
            content=message.content,
            customer_info=message.customer_info,
            category=message.category,
            priority=message.priority.value,
            status=message.status,
            queued_at=message.queued_at,
            estimated_process_at=message.estimated_process_at,
        )
        with self._session() as session:
            session.add(row)

    def queue_status(self, owner_id: str) -> schemas.QueueStatus:
        stmt = select(models.QueuedMessage.queued_at).where(
            models.QueuedMessage.owner_id == owner_id,
            models.QueuedMessage.status == "queued",
        )
        with self._session() as session:
            queued_at = list(session.scalars(stmt))
        return summarize_queue(queued_at)

    # Conversations ---------------------------------------------------------
    def get_conversation(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Conversation]:
        with self._session() as session:
            row = session.get(models.Conversation, (conversation_id, owner_id))
            if row is None:
                return None
            return schemas.Conversation.model_validate(row, from_attributes=True)

    def upsert_conversation_if_missing(
        self, conversation_id: str, owner_id: str, defaults: Dict[str, Any]
    ) -> None:
        values = {"id": conversation_id, "owner_id": owner_id, **defaults}
        with self._session() as session:
            dialect = session.get_bind().dialect.name
            if dialect == "postgresql":
                session.execute(pg_insert(models.Conversation).values(**values).on_conflict_do_nothing())
            elif dialect == "sqlite":
                session.execute(
                    sqlite_insert(models.Conversation).values(**values).on_conflict_do_nothing()
                )
            elif session.get(models.Conversation, (conversation_id, owner_id)) is None:
                session.add(models.Conversation(**values))
                session.flush()

    def update_assigned_agent(
        self, conversation_id: str, owner_id: str, agent_id: str, agent_name: str
    ) -> None:
        with self._session() as session:
            row = session.get(models.Conversation, (conversation_id, owner_id))
            if row is None:
                return
            row.assigned_agent_id = agent_id
            row.assigned_agent_name = agent_name
            session.flush()

    # Assignments -----------------------------------------------------------
    def _active_row(self, session: Session, conversation_id: str, owner_id: str):
        stmt = select(models.Assignment).where(
            models.Assignment.conversation_id == conversation_id,
            models.Assignment.owner_id == owner_id,
            models.Assignment.status == schemas.AssignmentStatus.ACTIVE.value,
        )
        return session.scalars(stmt).first()

    def get_active_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]:
        with self._session() as session:
            row = self._active_row(session, conversation_id, owner_id)
            return _assignment(row) if row is not None else None

    def deactivate_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]:
        with self._session() as session:
            row = self._active_row(session, conversation_id, owner_id)
            if row is None:
                return None
            row.status = schemas.AssignmentStatus.INACTIVE.value
            session.flush()
            return _assignment(row)

    def insert_assignment(self, assignment: schemas.Assignment) -> schemas.Assignment:
        row = models.Assignment(
            id=assignment.id,
            conversation_id=assignment.conversation_id,
            owner_id=assignment.owner_id,
            agent_id=assignment.agent_id,
            agent_type=assignment.agent_type.value,
            agent_name=assignment.agent_name,
            reason=assignment.reason,
            status=assignment.status.value,
            created_at=assignment.created_at,
        )
        with self._session() as session:
            session.add(row)
            session.flush()
        return assignment

    def list_assignments(
        self, conversation_id: str, owner_id: str
    ) -> List[schemas.Assignment]:
        stmt = (
            select(models.Assignment)
            .where(
                models.Assignment.conversation_id == conversation_id,
                models.Assignment.owner_id == owner_id,
            )
            .order_by(models.Assignment.created_at, models.Assignment.id)
        )
        with self._session() as session:
            return [_assignment(row) for row in session.scalars(stmt)]


__all__ = ["SqlDispatchStore"]
