"""Types shared by the notification core: enums, lifecycle table, context records, metadata."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class NotificationType(str, Enum):
    ALERT = "ALERT"
    REMINDER = "REMINDER"
    INSIGHT = "INSIGHT"
    MOTIVATION = "MOTIVATION"
    PROGRESS = "PROGRESS"
    ACHIEVEMENT = "ACHIEVEMENT"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    READ = "READ"
    DISMISSED = "DISMISSED"
    FAILED = "FAILED"


class TaskEvent(str, Enum):
    TASK_CREATED = "TASK_CREATED"
    TASK_DEADLINE_APPROACHING = "TASK_DEADLINE_APPROACHING"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_COMPLETED = "TASK_COMPLETED"


TERMINAL_STATUSES = frozenset(
    {NotificationStatus.READ, NotificationStatus.DISMISSED, NotificationStatus.FAILED}
)

# current status -> statuses it may move to. PENDING -> PENDING is an in-place reschedule.
ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset(
        {
            NotificationStatus.PENDING,
            NotificationStatus.SENT,
            NotificationStatus.DISMISSED,
            NotificationStatus.FAILED,
        }
    ),
    NotificationStatus.SENT: frozenset({NotificationStatus.READ, NotificationStatus.DISMISSED}),
    NotificationStatus.READ: frozenset(),
    NotificationStatus.DISMISSED: frozenset(),
    NotificationStatus.FAILED: frozenset(),
}


def can_transition(current: NotificationStatus | str, target: NotificationStatus | str) -> bool:
    return NotificationStatus(target) in ALLOWED_TRANSITIONS[NotificationStatus(current)]


class NotificationMetadata(BaseModel):
    """Allowed keys of Notification.metadata. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    tone: str | None = None
    emoji: str | None = None
    objective: str | None = None
    generated_with_ai: bool = False
    context_snapshot: dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0
    reschedule_count: int = 0
    last_error: str | None = None
    delivery: dict[str, Any] | None = None

    @classmethod
    def from_row(cls, payload: dict[str, Any] | None) -> "NotificationMetadata":
        return cls.model_validate(payload or {})


class EnqueueRequest(BaseModel):
    user_id: int
    task_id: int | None = None
    type: NotificationType
    objective: str | None = None
    delay_minutes: float = Field(default=0, ge=0)


@dataclass
class GeneratedContent:
    title: str
    message: str
    tone: str
    emoji: str
    generated_with_ai: bool = False


@dataclass
class DeliveryResult:
    """What the transport did for one notification: devices reached and per-device failures."""

    delivered: int = 0
    failures: list[dict[str, Any]] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.delivered + len(self.failures)

    def to_dict(self) -> dict[str, Any]:
        return {"delivered": self.delivered, "failures": list(self.failures)}


# ---------------------------------------------------------------------------
# Context records: everything scoring and content generation look at
# ---------------------------------------------------------------------------


@dataclass
class EngagementContext:
    engagement_score: float = 0.5
    activity_metrics: dict[str, Any] = field(default_factory=dict)
    behavior_patterns: dict[str, Any] = field(default_factory=dict)
    user_segment: str = "unknown"
    motivation_level: str = "medium"


@dataclass
class UserContext:
    id: int
    name: str
    email: str | None = None
    level: int = 1
    xp_points: int = 0
    streak: int = 0
    engagement: EngagementContext = field(default_factory=EngagementContext)


@dataclass
class TaskContext:
    id: int
    name: str
    description: str | None = None
    points: int = 0
    due_at: datetime | None = None
    completed: bool = False
    overdue: bool = False
    hours_until_deadline: float | None = None
    deadline_status: str = "no_deadline"
    urgency_level: str = "none"
    categories: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)


@dataclass
class SettingsSnapshot:
    personality: str
    window_start: str
    window_end: str
    max_per_day: int
    enabled_types: list[str]
    timezone: str


@dataclass
class NotificationContext:
    type: NotificationType
    objective: str
    user: UserContext
    settings: SettingsSnapshot
    now: datetime
    task: TaskContext | None = None

    def to_snapshot(self) -> dict[str, Any]:
        """JSON-safe copy stored on the notification for auditing."""
        data = asdict(self)
        data["type"] = self.type.value
        return _jsonable(data)


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
