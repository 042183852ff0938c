"""Business-hours window evaluation and the queueing gate.

The gate runs before classification: when an owner is closed the inbound
message is written to the queue and the pipeline stops. Any failure while
looking up the window or writing the queue record lets the message through,
since the gate is a secondary check and must not block service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import schemas
from .events import BackgroundEmitter
from .stores import BusinessHoursConfig, QueueStore

logger = logging.getLogger(__name__)


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown business-hours timezone %r; using UTC", name)
        return ZoneInfo("UTC")


def _clock(value: str) -> time:
    hours, _, minutes = value.partition(":")
    return time(int(hours), int(minutes or 0))


def sunday_based_weekday(instant: datetime) -> int:
    """Return the weekday with 0=Sunday .. 6=Saturday."""

    return (instant.weekday() + 1) % 7


def is_open(hours: schemas.BusinessHours, instant: datetime) -> bool:
    """Return whether ``instant`` falls inside the weekly window (end inclusive)."""

    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.astimezone(_zone(hours.timezone))
    if sunday_based_weekday(local) not in hours.days:
        return False
    start, end = _clock(hours.start), _clock(hours.end)
    current = local.time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= current <= end
    # Overnight window such as 22:00-06:00.
    return current >= start or current <= end


def next_opening(hours: schemas.BusinessHours, instant: datetime) -> datetime | None:
    """Return the next instant the window opens after ``instant``."""

    if not hours.days:
        return None
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    zone = _zone(hours.timezone)
    local = instant.astimezone(zone)
    start = _clock(hours.start)
    for offset in range(0, 8):
        day = local.date() + timedelta(days=offset)
        candidate = datetime.combine(day, start, tzinfo=zone)
        if candidate <= local:
            continue
        if sunday_based_weekday(candidate) in hours.days:
            return candidate.astimezone(timezone.utc)
    return None


MINUTES_PER_QUEUED_MESSAGE = 5


def summarize_queue(queued_at: list[datetime]) -> schemas.QueueStatus:
    """Build a queue summary from the enqueue instants of pending messages."""

    if not queued_at:
        return schemas.QueueStatus()
    return schemas.QueueStatus(
        queue_length=len(queued_at),
        oldest_queued_at=min(queued_at),
        estimated_wait_minutes=len(queued_at) * MINUTES_PER_QUEUED_MESSAGE,
    )


@dataclass
class GateResult:
    queued: bool
    message: schemas.QueuedMessage | None = None


class BusinessHoursGate:
    """Queue inbound messages that arrive while the owner is closed."""

    def __init__(
        self,
        config: BusinessHoursConfig,
        queue: QueueStore,
        *,
        emitter: BackgroundEmitter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config
        self._queue = queue
        self._emitter = emitter
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def check_and_maybe_queue(
        self,
        owner_id: str,
        conversation_id: str,
        platform: str,
        content: str,
        customer_info: dict[str, Any] | None = None,
        category: str | None = None,
    ) -> GateResult:
        instant = self._clock()
        try:
            if self._config.is_within_business_hours(owner_id, instant):
                return GateResult(queued=False)
            hours = self._config.get_business_hours(owner_id)
        except Exception:
            logger.warning(
                "Business hours lookup failed for owner %s; continuing dispatch",
                owner_id,
                exc_info=True,
            )
            return GateResult(queued=False)

        message = schemas.QueuedMessage(
            conversation_id=conversation_id,
            owner_id=owner_id,
            platform=platform,
            content=content,
            customer_info=customer_info,
            category=category,
            priority=schemas.Urgency.MEDIUM,
            queued_at=instant,
            estimated_process_at=next_opening(hours, instant) if hours else None,
        )
        try:
            self._queue.enqueue(message)
        except Exception:
            logger.warning(
                "Queueing conversation %s failed; continuing dispatch",
                conversation_id,
                exc_info=True,
            )
            return GateResult(queued=False)

        logger.info(
            "Queued conversation %s for owner %s until %s",
            conversation_id,
            owner_id,
            message.estimated_process_at,
            extra={"owner_id": owner_id, "conversation_id": conversation_id},
        )
        if self._emitter is not None:
            self._emitter.emit(
                "message_queued",
                {
                    "owner_id": owner_id,
                    "conversation_id": conversation_id,
                    "platform": platform,
                    "customer_info": customer_info or {},
                    "estimated_process_at": (
                        message.estimated_process_at.isoformat()
                        if message.estimated_process_at
                        else None
                    ),
                },
            )
        return GateResult(queued=True, message=message)


__all__ = [
    "BusinessHoursGate",
    "GateResult",
    "is_open",
    "next_opening",
    "summarize_queue",
    "sunday_based_weekday",
]
