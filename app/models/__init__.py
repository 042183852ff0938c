"""SQLAlchemy declarative base and dispatch models.

This package hosts the SQLAlchemy models used by the dispatch store. It
exposes a single declarative ``Base`` class that other modules can import when
creating tables or writing migrations in Python. Individual models live in
dedicated modules within this package.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export the dispatch models so callers can import them via
# ``from app.models import Agent`` instead of touching private modules.
from .dispatch import (
    Agent,
    Assignment,
    AssignmentRule,
    BusinessHours,
    ClassificationRule,
    Conversation,
    QueuedMessage,
)


__all__ = [
    "Agent",
    "Assignment",
    "AssignmentRule",
    "Base",
    "BusinessHours",
    "ClassificationRule",
    "Conversation",
    "QueuedMessage",
]
