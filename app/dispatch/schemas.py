"""Pydantic schemas for the dispatch engine and its HTTP surface."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AgentType(str, Enum):
    AI = "ai"
    HUMAN = "human"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class AssignmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class IntentCategory(str, Enum):
    """Funnel stage a classified message belongs to."""

    ACQUISITION = "acquisition"
    ENGAGEMENT = "engagement"
    RETENTION = "retention"
    SUPPORT = "support"


class LeadPriority(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COLD = "cold"


class Urgency(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ClassificationSource(str, Enum):
    RULE = "rule"
    BUILTIN = "builtin"
    ORACLE = "oracle"
    FALLBACK = "fallback"


# ---------------------------------------------------------------------------
# Domain records
# ---------------------------------------------------------------------------


class Turn(BaseModel):
    """A single prior message in a conversation history."""

    role: str
    content: str = ""


class Agent(BaseModel):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    type: AgentType
    name: str
    status: AgentStatus = AgentStatus.ACTIVE
    capacity_limit: int = Field(default=100, ge=0)
    current_load: int = Field(default=0, ge=0)
    category_tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def utilization(self) -> float:
        if self.capacity_limit <= 0:
            return 1.0
        return self.current_load / self.capacity_limit

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.capacity_limit


class TimeWindow(BaseModel):
    """Inclusive hour window; ``start``/``end`` accept ``"HH"`` or ``"HH:MM"``."""

    start: str
    end: str

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> str:
        return str(value)

    @property
    def start_hour(self) -> int:
        return _parse_hour(self.start)

    @property
    def end_hour(self) -> int:
        return _parse_hour(self.end)

    @model_validator(mode="after")
    def _check_hours(self) -> "TimeWindow":
        for hour in (self.start_hour, self.end_hour):
            if not 0 <= hour <= 23:
                raise ValueError("time_of_day hours must be within 0-23")
        return self


def _parse_hour(value: str) -> int:
    try:
        return int(value.strip().split(":", 1)[0])
    except ValueError as exc:
        raise ValueError(f"invalid hour value {value!r}") from exc


class TriggerConditions(BaseModel):
    """Conjunctive match conditions; ``None`` means wildcard."""

    platform: str | None = None
    category: IntentCategory | None = None
    keywords: list[str] | None = None
    time_of_day: TimeWindow | None = None
    day_of_week: list[int] | None = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("day_of_week")
    @classmethod
    def _check_days(cls, value: list[int] | None) -> list[int] | None:
        if value is not None and any(day < 0 or day > 6 for day in value):
            raise ValueError("day_of_week entries must be within 0 (Sunday) and 6")
        return value


class AssignmentRule(BaseModel):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    name: str
    trigger_conditions: TriggerConditions = Field(default_factory=TriggerConditions)
    target_agent_id: str
    priority: int = 100
    active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class ClassificationRule(BaseModel):
    id: str = Field(default_factory=_new_id)
    owner_id: str
    name: str
    intent: str
    keywords: list[str] = Field(default_factory=list)
    category: IntentCategory = IntentCategory.ENGAGEMENT
    priority: LeadPriority = LeadPriority.WARM
    urgency: Urgency = Urgency.MEDIUM
    confidence_boost: int = 10
    rank: int = 100
    active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)


class IntentClassification(BaseModel):
    intent: str
    confidence: int = Field(ge=0, le=100)
    category: IntentCategory
    priority: LeadPriority
    urgency: Urgency
    reasoning: str | None = None
    source: ClassificationSource = ClassificationSource.BUILTIN


class Conversation(BaseModel):
    id: str
    owner_id: str
    platform: str | None = None
    status: str = "active"
    priority: str = "medium"
    assigned_agent_id: str | None = None
    assigned_agent_name: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class Assignment(BaseModel):
    id: str = Field(default_factory=_new_id)
    conversation_id: str
    owner_id: str
    agent_id: str
    agent_type: AgentType
    agent_name: str
    reason: str
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    created_at: datetime = Field(default_factory=_utcnow)


class QueuedMessage(BaseModel):
    id: str = Field(default_factory=_new_id)
    conversation_id: str
    owner_id: str
    platform: str
    content: str
    customer_info: dict[str, Any] | None = None
    category: str | None = None
    priority: Urgency = Urgency.MEDIUM
    status: str = "queued"
    queued_at: datetime = Field(default_factory=_utcnow)
    estimated_process_at: datetime | None = None


class QueueStatus(BaseModel):
    queue_length: int = 0
    oldest_queued_at: datetime | None = None
    estimated_wait_minutes: int | None = None


class BusinessHours(BaseModel):
    """Weekly opening window for an owner, evaluated in ``timezone``."""

    owner_id: str
    start: str = "09:00"
    end: str = "17:00"
    timezone: str = "UTC"
    days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])

    @field_validator("start", "end")
    @classmethod
    def _check_clock(cls, value: str) -> str:
        hours, _, minutes = value.partition(":")
        if not (hours.isdigit() and minutes.isdigit()):
            raise ValueError("business hours must use HH:MM")
        if not (0 <= int(hours) <= 23 and 0 <= int(minutes) <= 59):
            raise ValueError("business hours must use HH:MM")
        return f"{int(hours):02d}:{int(minutes):02d}"

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days entries must be within 0 (Sunday) and 6")
        return sorted(set(value))


class CapacityCheck(BaseModel):
    can_accept: bool
    reason: str | None = None
    at_capacity: bool = False


class AgentChoice(BaseModel):
    agent_id: str
    reason: str


# ---------------------------------------------------------------------------
# Pipeline input/output
# ---------------------------------------------------------------------------


class DispatchRequest(BaseModel):
    conversation_id: str
    owner_id: str
    platform: str
    message_content: str | None = None
    customer_info: dict[str, Any] | None = None
    category: str | None = None
    history: list[Turn] | None = None


class DispatchResult(BaseModel):
    assigned: bool
    queued: bool = False
    agent_id: str | None = None
    status: str
    reason: str | None = None
    classification: IntentClassification | None = None


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class DispatchPayload(BaseModel):
    conversation_id: str
    platform: str
    message_content: str | None = None
    customer_info: dict[str, Any] | None = None
    category: str | None = None
    history: list[Turn] | None = None


class ClassifyPayload(BaseModel):
    content: str = ""
    history: list[Turn] | None = None


class ReassignPayload(BaseModel):
    agent_id: str
    reason: str | None = None


class AssignmentRuleCreate(BaseModel):
    name: str
    trigger_conditions: TriggerConditions = Field(default_factory=TriggerConditions)
    target_agent_id: str
    priority: int = 100
    active: bool = True


class AssignmentRuleUpdate(BaseModel):
    name: str | None = None
    trigger_conditions: TriggerConditions | None = None
    target_agent_id: str | None = None
    priority: int | None = None
    active: bool | None = None


class ClassificationRuleCreate(BaseModel):
    name: str
    intent: str
    keywords: list[str] = Field(default_factory=list)
    category: IntentCategory = IntentCategory.ENGAGEMENT
    priority: LeadPriority = LeadPriority.WARM
    urgency: Urgency = Urgency.MEDIUM
    confidence_boost: int = 10
    rank: int = 100
    active: bool = True


class ClassificationRuleUpdate(BaseModel):
    name: str | None = None
    intent: str | None = None
    keywords: list[str] | None = None
    category: IntentCategory | None = None
    priority: LeadPriority | None = None
    urgency: Urgency | None = None
    confidence_boost: int | None = None
    rank: int | None = None
    active: bool | None = None


class AgentCreate(BaseModel):
    type: AgentType
    name: str
    status: AgentStatus = AgentStatus.ACTIVE
    capacity_limit: int = Field(default=100, ge=0)
    category_tags: list[str] = Field(default_factory=list)


class BusinessHoursUpdate(BaseModel):
    start: str = "09:00"
    end: str = "17:00"
    timezone: str = "UTC"
    days: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])


class AssignmentRuleList(BaseModel):
    items: list[AssignmentRule]
    total: int


class ClassificationRuleList(BaseModel):
    items: list[ClassificationRule]
    total: int


class AssignmentList(BaseModel):
    items: list[Assignment]
    total: int


class AgentList(BaseModel):
    items: list[Agent]
    total: int
