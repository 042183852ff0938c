"""Create the dispatch engine tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_dispatch_tables"
down_revision = None
branch_labels = None
depends_on = None


_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
_NOW = sa.text("CURRENT_TIMESTAMP")


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else _NOW,
    )


def upgrade() -> None:
    """Create agents, rules, conversations, assignments, queue and hours tables."""

    op.create_table(
        "conversations",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("owner_id", sa.String(length=128), primary_key=True),
        sa.Column("platform", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'active'")),
        sa.Column("priority", sa.String(length=32), nullable=False, server_default=sa.text("'medium'")),
        sa.Column("assigned_agent_id", sa.String(length=64), nullable=True),
        sa.Column("assigned_agent_name", sa.String(length=255), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
    )

    op.create_table(
        "agents",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        sa.Column("capacity_limit", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("current_load", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("category_tags", _JSON, nullable=False),
        _timestamp("created_at"),
        sa.CheckConstraint("type IN ('ai', 'human')", name="ck_agents_type"),
        sa.CheckConstraint("current_load >= 0", name="ck_agents_load_non_negative"),
    )
    op.create_index("ix_agents_owner_status", "agents", ["owner_id", "status"])

    op.create_table(
        "assignment_rules",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("trigger_conditions", _JSON, nullable=False),
        sa.Column("target_agent_id", sa.String(length=64), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_assignment_rules_owner_priority", "assignment_rules", ["owner_id", "priority"]
    )

    op.create_table(
        "classification_rules",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("intent", sa.String(length=128), nullable=False),
        sa.Column("keywords", _JSON, nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("priority", sa.String(length=16), nullable=False),
        sa.Column("urgency", sa.String(length=16), nullable=False),
        sa.Column("confidence_boost", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("rank", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
    )
    op.create_index(
        "ix_classification_rules_owner_rank", "classification_rules", ["owner_id", "rank"]
    )

    op.create_table(
        "conversation_assignments",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("conversation_id", sa.String(length=128), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("agent_id", sa.String(length=64), nullable=False),
        sa.Column("agent_type", sa.String(length=16), nullable=False),
        sa.Column("agent_name", sa.String(length=255), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        _timestamp("created_at"),
    )
    op.create_index(
        "ux_conversation_assignments_active",
        "conversation_assignments",
        ["owner_id", "conversation_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
        sqlite_where=sa.text("status = 'active'"),
    )
    op.create_index(
        "ix_conversation_assignments_conversation",
        "conversation_assignments",
        ["owner_id", "conversation_id"],
    )

    op.create_table(
        "queued_messages",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("conversation_id", sa.String(length=128), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("platform", sa.String(length=64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("customer_info", _JSON, nullable=True),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("priority", sa.String(length=16), nullable=False, server_default=sa.text("'medium'")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'queued'")),
        _timestamp("queued_at"),
        _timestamp("estimated_process_at", nullable=True),
    )
    op.create_index("ix_queued_messages_owner_status", "queued_messages", ["owner_id", "status"])

    op.create_table(
        "business_hours",
        sa.Column("owner_id", sa.String(length=128), primary_key=True),
        sa.Column("start", sa.String(length=5), nullable=False, server_default=sa.text("'09:00'")),
        sa.Column("end", sa.String(length=5), nullable=False, server_default=sa.text("'17:00'")),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("days", _JSON, nullable=False),
    )


def downgrade() -> None:
    """Drop the dispatch tables."""

    op.drop_table("business_hours")
    op.drop_index("ix_queued_messages_owner_status", table_name="queued_messages")
    op.drop_table("queued_messages")
    op.drop_index("ix_conversation_assignments_conversation", table_name="conversation_assignments")
    op.drop_index("ux_conversation_assignments_active", table_name="conversation_assignments")
    op.drop_table("conversation_assignments")
    op.drop_index("ix_classification_rules_owner_rank", table_name="classification_rules")
    op.drop_table("classification_rules")
    op.drop_index("ix_assignment_rules_owner_priority", table_name="assignment_rules")
    op.drop_table("assignment_rules")
    op.drop_index("ix_agents_owner_status", table_name="agents")
    op.drop_table("agents")
    op.drop_table("conversations")
