"""Dispatch pipeline orchestration.

``DispatchService.dispatch`` runs one inbound event through the pipeline::

    existing assignment? -> business hours gate -> intent classifier
        -> rule matcher -> capacity-aware dispatcher -> committer

Non-critical reads fail open. Critical writes propagate
:class:`~app.dispatch.errors.DependencyError` to the caller.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import schemas
from .business_hours import BusinessHoursGate
from .capacity import DEFAULT_REASON, CapacityAwareDispatcher, DefaultAssignmentFallback
from .classifier import IntentClassifier
from .committer import AssignmentCommitter, CommitOutcome
from .errors import (
    CapacityConflict,
    NoAvailableAgentError,
    NotFoundError,
    ValidationError,
)
from .events import BackgroundEmitter
from .matcher import MatchContext, match_rule
from .oracle import IntentOracle
from .stores import DispatchStore

logger = logging.getLogger(__name__)

STATUS_ASSIGNED = "assigned"
STATUS_ALREADY_ASSIGNED = "already_assigned"
STATUS_QUEUED = "queued"
STATUS_UNASSIGNED = "unassigned"
STATUS_PENDING = "pending"

NO_AVAILABLE_AGENT = "no_available_agent"


def _require(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    return str(value).strip()


class DispatchService:
    """Decide which agent owns a conversation and persist the decision."""

    def __init__(
        self,
        store: DispatchStore,
        *,
        classifier: IntentClassifier | None = None,
        gate: BusinessHoursGate | None = None,
        dispatcher: CapacityAwareDispatcher | None = None,
        committer: AssignmentCommitter | None = None,
        emitter: BackgroundEmitter | None = None,
        oracle: IntentOracle | None = None,
        oracle_threshold: int = 40,
        clock: Callable[[], datetime] | None = None,
        local_timezone: str = "UTC",
        capacity_retries: int = 2,
    ) -> None:
        self._store = store
        self._emitter = emitter
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._classifier = classifier or IntentClassifier(
            store, oracle=oracle, oracle_threshold=oracle_threshold
        )
        self._gate = gate or BusinessHoursGate(store, store, emitter=emitter, clock=self._clock)
        self._fallback = DefaultAssignmentFallback(store)
        self._dispatcher = dispatcher or CapacityAwareDispatcher(store, self._fallback)
        self._committer = committer or AssignmentCommitter(store, store, store, emitter=emitter)
        self._capacity_retries = max(0, capacity_retries)
        try:
            self._zone = ZoneInfo(local_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown dispatch timezone %r; using UTC", local_timezone)
            self._zone = ZoneInfo("UTC")

    @property
    def committer(self) -> AssignmentCommitter:
        return self._committer

    # Pipeline --------------------------------------------------------------
    def dispatch(self, request: schemas.DispatchRequest) -> schemas.DispatchResult:
        conversation_id = _require(request.conversation_id, "conversation_id")
        owner_id = _require(request.owner_id, "owner_id")
        log_extra = {"owner_id": owner_id, "conversation_id": conversation_id}
        logger.info(
            "Dispatching conversation %s on %s", conversation_id, request.platform, extra=log_extra
        )

        existing = self._existing_assignment(conversation_id, owner_id)
        if existing is not None:
            logger.info("Conversation already has agent assigned, skipping", extra=log_extra)
            return schemas.DispatchResult(
                assigned=True,
                agent_id=existing.agent_id,
                status=STATUS_ALREADY_ASSIGNED,
                reason=existing.reason,
            )

        gate = self._gate.check_and_maybe_queue(
            owner_id,
            conversation_id,
            request.platform,
            request.message_content or "New conversation",
            request.customer_info,
            request.category,
        )
        if gate.queued:
            return schemas.DispatchResult(
                assigned=False,
                queued=True,
                status=STATUS_QUEUED,
                reason="outside business hours",
            )

        classification = self._classifier.classify_intent(
            request.message_content, owner_id, request.history
        )
        logger.info(
            "Intent detected: %s (%s%% confidence)",
            classification.intent,
            classification.confidence,
            extra=log_extra,
        )

        rule = self._match(owner_id, request, classification)
        try:
            outcome = self._assign(request, owner_id, classification, rule)
        except NoAvailableAgentError as exc:
            logger.error("%s; conversation %s left unassigned", exc, conversation_id, extra=log_extra)
            if self._emitter is not None:
                self._emitter.emit(
                    NO_AVAILABLE_AGENT,
                    {
                        "owner_id": owner_id,
                        "conversation_id": conversation_id,
                        "platform": request.platform,
                    },
                )
            return schemas.DispatchResult(
                assigned=False,
                status=STATUS_UNASSIGNED,
                reason=NO_AVAILABLE_AGENT,
                classification=classification,
            )

        return schemas.DispatchResult(
            assigned=True,
            agent_id=outcome.assignment.agent_id,
            status=STATUS_ASSIGNED if outcome.created else STATUS_ALREADY_ASSIGNED,
            reason=outcome.assignment.reason,
            classification=classification,
        )

    def _existing_assignment(
        self, conversation_id: str, owner_id: str
    ) -> Optional[schemas.Assignment]:
        try:
            return self._store.get_active_assignment(conversation_id, owner_id)
        except Exception:
            # The committer re-checks inside its transaction.
            logger.warning(
                "Active assignment lookup failed for conversation %s",
                conversation_id,
                exc_info=True,
            )
            return None

    def _match(
        self,
        owner_id: str,
        request: schemas.DispatchRequest,
        classification: schemas.IntentClassification,
    ) -> Optional[schemas.AssignmentRule]:
        try:
            rules = self._store.list_active_assignment_rules(owner_id)
        except Exception:
            logger.warning(
                "Assignment rules unavailable for owner %s; using default assignment",
                owner_id,
                exc_info=True,
            )
            return None
        if not rules:
            logger.info("No assignment rules found for owner %s", owner_id)
            return None
        context = MatchContext(
            platform=request.platform,
            category=classification.category.value,
            message_content=request.message_content,
            instant=self._clock().astimezone(self._zone),
        )
        rule = match_rule(rules, context)
        if rule is None:
            logger.info("No matching rule found for owner %s", owner_id)
        return rule

    def _assign(
        self,
        request: schemas.DispatchRequest,
        owner_id: str,
        classification: schemas.IntentClassification,
        rule: Optional[schemas.AssignmentRule],
    ) -> CommitOutcome:
        category = classification.category.value
        tried: List[str] = []
        for _ in range(self._capacity_retries + 1):
            if rule is None:
                break
            choice = self._dispatcher.resolve_agent(
                rule.target_agent_id,
                owner_id,
                category,
                request.platform,
                exclude=tuple(tried),
            )
            if choice.reason == DEFAULT_REASON:
                return self._commit_default(request, owner_id)
            agent = self._store.get_agent(choice.agent_id, owner_id)
            if agent is None:
                tried.append(choice.agent_id)
                continue
            if agent.id == rule.target_agent_id:
                reason = f"Auto-assigned via rule: {rule.name} (Intent: {classification.intent})"
            else:
                reason = choice.reason
            try:
                return self._committer.commit(
                    request.conversation_id,
                    owner_id,
                    agent.id,
                    agent.type,
                    agent.name,
                    reason,
                )
            except CapacityConflict as exc:
                logger.info("%s; re-resolving", exc)
                tried.append(agent.id)
        return self._commit_default(request, owner_id)

    def _commit_default(self, request: schemas.DispatchRequest, owner_id: str) -> CommitOutcome:
        agent = self._fallback.default_agent(owner_id)
        return self._committer.commit(
            request.conversation_id,
            owner_id,
            agent.id,
            agent.type,
            agent.name,
            DEFAULT_REASON,
            enforce_capacity=False,
        )

    # Operator operations ---------------------------------------------------
    def classify(
        self,
        owner_id: str,
        content: str | None,
        history: Sequence[schemas.Turn] | None = None,
    ) -> schemas.IntentClassification:
        return self._classifier.classify_intent(content, _require(owner_id, "owner_id"), history)

    def reassign(
        self,
        conversation_id: str,
        owner_id: str,
        agent_id: str,
        reason: str | None = None,
    ) -> schemas.Assignment:
        conversation_id = _require(conversation_id, "conversation_id")
        owner_id = _require(owner_id, "owner_id")
        agent = self._store.get_agent(_require(agent_id, "agent_id"), owner_id)
        if agent is None:
            raise NotFoundError(f"Agent {agent_id} not found")
        if agent.status != schemas.AgentStatus.ACTIVE:
            raise ValidationError(f"Agent {agent.name} is {agent.status.value}")
        outcome = self._committer.reassign(
            conversation_id,
            owner_id,
            agent.id,
            agent.type,
            agent.name,
            reason or "Manually reassigned",
        )
        return outcome.assignment

    def get_assignment(self, conversation_id: str, owner_id: str) -> schemas.Assignment:
        assignment = self._store.get_active_assignment(conversation_id, owner_id)
        if assignment is None:
            raise NotFoundError(f"Conversation {conversation_id} has no active assignment")
        return assignment

    def list_assignments(self, conversation_id: str, owner_id: str) -> List[schemas.Assignment]:
        return self._store.list_assignments(conversation_id, owner_id)

    def queue_status(self, owner_id: str) -> schemas.QueueStatus:
        return self._store.queue_status(_require(owner_id, "owner_id"))


class DispatchRunner:
    """Run pipelines on a worker pool with an overall deadline.

    A run that misses the deadline reports ``pending``; the pipeline keeps
    going in the background and a retry is safe because commits are
    idempotent per conversation.
    """

    def __init__(
        self,
        service: DispatchService,
        *,
        timeout_seconds: float = 10.0,
        max_workers: int = 8,
    ) -> None:
        self._service = service
        self._timeout = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dispatch"
        )

    def run(self, request: schemas.DispatchRequest) -> schemas.DispatchResult:
        future = self._executor.submit(self._service.dispatch, request)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout:
            logger.warning(
                "Dispatch of conversation %s exceeded %.1fs",
                request.conversation_id,
                self._timeout,
                extra={"owner_id": request.owner_id, "conversation_id": request.conversation_id},
            )
            return schemas.DispatchResult(
                assigned=False,
                status=STATUS_PENDING,
                reason="dispatch timed out; safe to retry",
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


__all__ = [
    "DispatchRunner",
    "DispatchService",
    "NO_AVAILABLE_AGENT",
    "STATUS_ALREADY_ASSIGNED",
    "STATUS_ASSIGNED",
    "STATUS_PENDING",
    "STATUS_QUEUED",
    "STATUS_UNASSIGNED",
]
