"""Exception taxonomy shared by the dispatch pipeline and its stores."""

from __future__ import annotations


class DispatchError(RuntimeError):
    """Base class for dispatch failures."""


class ValidationError(DispatchError, ValueError):
    """Raised when a dispatch request lacks an owner or conversation id."""


class NotFoundError(DispatchError):
    """Raised when a referenced rule, agent or conversation does not exist."""


class DependencyError(DispatchError):
    """Raised when a store or external collaborator is unreachable or slow."""


class NoAvailableAgentError(DispatchError):
    """Raised when an owner has no active AI agent to fall back to."""

    def __init__(self, owner_id: str) -> None:
        super().__init__(f"No active AI agent available for owner {owner_id}")
        self.owner_id = owner_id


class CapacityConflict(DispatchError):
    """Raised at commit time when the chosen agent filled up concurrently."""

    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Agent {agent_id} has no free capacity")
        self.agent_id = agent_id


__all__ = [
    "CapacityConflict",
    "DependencyError",
    "DispatchError",
    "NoAvailableAgentError",
    "NotFoundError",
    "ValidationError",
]
