"""SQLAlchemy models backing the dispatch engine.

The tables mirror ``app/migrations/001_create_dispatch_tables.py``. Every row
is scoped by ``owner_id``. Identifiers are opaque strings so that callers can
reuse the ids of the messaging platform they integrate with.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from . import Base

_JSON = JSON().with_variant(JSONB(), "postgresql")


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored as UTC; SQLite values come back aware too."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=dt.timezone.utc)
        return value.astimezone(dt.timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=dt.timezone.utc)
        return value


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class Conversation(Base):
    """A customer conversation as seen by the dispatcher.

    Attributes:
        id: Conversation identifier supplied by the caller.
        owner_id: Account that owns the conversation.
        assigned_agent_id: Denormalized copy of the active assignment's agent.
        assigned_agent_name: Denormalized copy of the agent's display name.
    """

    __tablename__ = "conversations"

    id: Mapped[str] = mapped_column(String(length=128), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String(length=128), primary_key=True)
    platform: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    status: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="active", server_default=text("'active'")
    )
    priority: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="medium", server_default=text("'medium'")
    )
    assigned_agent_id: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    assigned_agent_name: Mapped[Optional[str]] = mapped_column(String(length=255), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Agent(Base):
    """An AI or human responder with a concurrent-conversation budget."""

    __tablename__ = "agents"
    __table_args__ = (Index("ix_agents_owner_status", "owner_id", "status"),)

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    type: Mapped[str] = mapped_column(String(length=16), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default="active", server_default=text("'active'")
    )
    capacity_limit: Mapped[int] = mapped_column(
        Integer, nullable=False, default=100, server_default=text("100")
    )
    current_load: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    category_tags: Mapped[list[str]] = mapped_column(_JSON, nullable=False, default=list)
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )


class AssignmentRule(Base):
    """Routes matching inbound events to a target agent."""

    __tablename__ = "assignment_rules"
    __table_args__ = (Index("ix_assignment_rules_owner_priority", "owner_id", "priority"),)

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    trigger_conditions: Mapped[dict[str, Any]] = mapped_column(_JSON, nullable=False, default=dict)
    target_agent_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    active: Mapped[bool] = mapped_column(nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )


class ClassificationRule(Base):
    """Keyword rule that labels messages with an intent."""

    __tablename__ = "classification_rules"
    __table_args__ = (Index("ix_classification_rules_owner_rank", "owner_id", "rank"),)

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    intent: Mapped[str] = mapped_column(String(length=128), nullable=False)
    keywords: Mapped[list[str]] = mapped_column(_JSON, nullable=False, default=list)
    category: Mapped[str] = mapped_column(String(length=32), nullable=False)
    priority: Mapped[str] = mapped_column(String(length=16), nullable=False)
    urgency: Mapped[str] = mapped_column(String(length=16), nullable=False)
    confidence_boost: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    active: Mapped[bool] = mapped_column(nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )


class Assignment(Base):
    """Historical and current agent ownership of a conversation.

    The partial unique index guarantees a single ``active`` row per
    conversation on both PostgreSQL and SQLite.
    """

    __tablename__ = "conversation_assignments"
    __table_args__ = (
        Index(
            "ux_conversation_assignments_active",
            "owner_id",
            "conversation_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_conversation_assignments_conversation", "owner_id", "conversation_id"),
    )

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    conversation_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(length=64), nullable=False)
    agent_type: Mapped[str] = mapped_column(String(length=16), nullable=False)
    agent_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default="active")
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )


class QueuedMessage(Base):
    """Inbound message held until the owner's business hours open."""

    __tablename__ = "queued_messages"
    __table_args__ = (Index("ix_queued_messages_owner_status", "owner_id", "status"),)

    id: Mapped[str] = mapped_column(String(length=64), primary_key=True, default=_new_id)
    conversation_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(length=128), nullable=False)
    platform: Mapped[str] = mapped_column(String(length=64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    customer_info: Mapped[Optional[dict[str, Any]]] = mapped_column(_JSON, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(length=64), nullable=True)
    priority: Mapped[str] = mapped_column(String(length=16), nullable=False, default="medium")
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default="queued")
    queued_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=_utcnow
    )
    estimated_process_at: Mapped[Optional[dt.datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )


class BusinessHours(Base):
    """Weekly opening window; a missing row means always open."""

    __tablename__ = "business_hours"

    owner_id: Mapped[str] = mapped_column(String(length=128), primary_key=True)
    start: Mapped[str] = mapped_column(String(length=5), nullable=False, default="09:00")
    end: Mapped[str] = mapped_column(String(length=5), nullable=False, default="17:00")
    timezone: Mapped[str] = mapped_column(String(length=64), nullable=False, default="UTC")
    days: Mapped[list[int]] = mapped_column(_JSON, nullable=False, default=list)


__all__ = [
    "Agent",
    "Assignment",
    "AssignmentRule",
    "BusinessHours",
    "ClassificationRule",
    "Conversation",
    "QueuedMessage",
]
