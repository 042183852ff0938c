"""Conversation dispatch engine: intent classification and agent assignment."""

from . import schemas
from .admin import DispatchAdminService
from .errors import (
    CapacityConflict,
    DependencyError,
    DispatchError,
    NoAvailableAgentError,
    NotFoundError,
    ValidationError,
)
from .memory import InMemoryDispatchStore
from .service import DispatchRunner, DispatchService

__all__ = [
    "CapacityConflict",
    "DependencyError",
    "DispatchAdminService",
    "DispatchError",
    "DispatchRunner",
    "DispatchService",
    "InMemoryDispatchStore",
    "NoAvailableAgentError",
    "NotFoundError",
    "ValidationError",
    "schemas",
]
