"""Capacity-aware agent resolution and the default-agent fallback."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .errors import NoAvailableAgentError
from .schemas import Agent, AgentChoice, AgentStatus, AgentType, CapacityCheck
from .stores import AgentDirectory

logger = logging.getLogger(__name__)

REASSIGNED_REASON = "reassigned: original at capacity"
DEFAULT_REASON = "Default auto-assignment - first available AI agent"


def check_agent_capacity(agent: Optional[Agent]) -> CapacityCheck:
    """Capacity verdict for a directory record, shared by the store backends."""

    if agent is None:
        return CapacityCheck(can_accept=False, reason="Agent not found")
    if agent.status != AgentStatus.ACTIVE:
        return CapacityCheck(can_accept=False, reason=f"Agent is {agent.status.value}")
    if not agent.has_capacity:
        return CapacityCheck(
            can_accept=False,
            at_capacity=True,
            reason=(
                f"{agent.type.value} agent at capacity "
                f"({agent.current_load}/{agent.capacity_limit} conversations)"
            ),
        )
    return CapacityCheck(
        can_accept=True,
        reason=(
            f"{agent.type.value} agent available "
            f"({agent.current_load}/{agent.capacity_limit} conversations)"
        ),
    )


def _serves(agent: Agent, category: Optional[str], platform: Optional[str]) -> bool:
    if not agent.category_tags:
        return True
    tags = {tag.lower() for tag in agent.category_tags}
    wanted = {value.lower() for value in (category, platform) if value}
    return not wanted or bool(tags & wanted)


def rank_available_agents(
    agents: Iterable[Agent],
    category: Optional[str] = None,
    platform: Optional[str] = None,
    *,
    exclude: Iterable[str] = (),
) -> list[Agent]:
    """Order candidate agents deterministically, best first.

    Support traffic prefers humans; otherwise the least utilised agent wins,
    tie-broken by absolute load and then by id.
    """

    excluded = set(exclude)
    candidates = [
        agent
        for agent in agents
        if agent.id not in excluded
        and agent.status == AgentStatus.ACTIVE
        and agent.has_capacity
        and _serves(agent, category, platform)
    ]
    prefer_human = category == "support" and any(
        agent.type == AgentType.HUMAN for agent in candidates
    )

    def _key(agent: Agent) -> tuple:
        human_first = 0 if prefer_human and agent.type == AgentType.HUMAN else 1
        return (human_first, agent.utilization, agent.current_load, agent.id)

    return sorted(candidates, key=_key)


def pick_oldest_ai_agent(agents: Iterable[Agent]) -> Optional[Agent]:
    eligible = [
        agent
        for agent in agents
        if agent.type == AgentType.AI and agent.status == AgentStatus.ACTIVE
    ]
    if not eligible:
        return None
    return min(eligible, key=lambda agent: (agent.created_at, agent.id))


class DefaultAssignmentFallback:
    """Last-resort selection: the owner's oldest active AI agent."""

    def __init__(self, directory: AgentDirectory) -> None:
        self._directory = directory

    def default_agent(self, owner_id: str) -> Agent:
        agent = self._directory.oldest_active_ai_agent(owner_id)
        if agent is None:
            raise NoAvailableAgentError(owner_id)
        return agent


class CapacityAwareDispatcher:
    """Validate the rule-selected agent and reassign when it is full."""

    def __init__(
        self,
        directory: AgentDirectory,
        fallback: DefaultAssignmentFallback | None = None,
    ) -> None:
        self._directory = directory
        self._fallback = fallback or DefaultAssignmentFallback(directory)

    def resolve_agent(
        self,
        candidate_agent_id: str,
        owner_id: str,
        category: Optional[str] = None,
        platform: Optional[str] = None,
        *,
        exclude: Iterable[str] = (),
    ) -> AgentChoice:
        excluded = tuple(exclude)
        reassigned_reason = REASSIGNED_REASON
        if candidate_agent_id not in excluded:
            try:
                check = self._directory.check_capacity(candidate_agent_id, owner_id)
            except Exception:
                logger.warning(
                    "Capacity lookup failed for agent %s; assuming it is available",
                    candidate_agent_id,
                    exc_info=True,
                )
                return AgentChoice(agent_id=candidate_agent_id, reason="capacity unchecked")
            if check.can_accept:
                return AgentChoice(agent_id=candidate_agent_id, reason=check.reason or "")
            logger.info(
                "Agent %s cannot take new conversation: %s", candidate_agent_id, check.reason
            )
            if not check.at_capacity:
                reassigned_reason = f"reassigned: {check.reason}"

        try:
            alternative = self._directory.find_available_agent(
                owner_id,
                category,
                platform,
                exclude=(candidate_agent_id, *excluded),
            )
        except Exception:
            logger.warning(
                "Available-agent search failed for owner %s", owner_id, exc_info=True
            )
            alternative = None
        if alternative is not None:
            logger.info("Using alternative agent %s", alternative.name)
            return AgentChoice(agent_id=alternative.id, reason=reassigned_reason)

        logger.info("No alternative agents available, using default assignment")
        default = self._fallback.default_agent(owner_id)
        return AgentChoice(agent_id=default.id, reason=DEFAULT_REASON)


__all__ = [
    "CapacityAwareDispatcher",
    "DEFAULT_REASON",
    "DefaultAssignmentFallback",
    "REASSIGNED_REASON",
    "check_agent_capacity",
    "pick_oldest_ai_agent",
    "rank_available_agents",
]
