"""
Builds the NotificationContext that scoring and content generation read.

User context = profile + engagement signals (30-day activity, completion patterns, read /
feedback rates). Engagement is derived data: cached in user_engagement_context and recomputed
after ENGAGEMENT_CACHE_MINUTES; any failure computing it yields a neutral context.
"""
from __future__ import annotations

import logging
import statistics
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict
from datetime import datetime, timedelta

from app.core.constants import (
    DEFAULT_ENABLED_TYPES,
    DEFAULT_MAX_PER_DAY,
    DEFAULT_PERSONALITY,
    DEFAULT_TIMEZONE,
    DEFAULT_WINDOW_END,
    DEFAULT_WINDOW_START,
    POSITIVE_FEEDBACK_TYPES,
)
from app.core.errors import UserNotFoundError
from app.models.task import Task
from app.models.user import User
from app.services.notifications.stores import NotificationStore, TaskStore, UserStore
from app.services.notifications.time_window import to_local
from app.services.notifications.types import (
    EngagementContext,
    EnqueueRequest,
    NotificationContext,
    NotificationStatus,
    SettingsSnapshot,
    TaskContext,
    UserContext,
)

logger = logging.getLogger(__name__)

ACTIVITY_DAYS = 30
ENGAGEMENT_HISTORY_LIMIT = 100
READ_RATE_WEIGHT = 0.7
FEEDBACK_WEIGHT = 0.3
NEUTRAL_ENGAGEMENT = 0.5

DEFAULT_OBJECTIVES = {
    "ALERT": "Warn the user that a task needs attention now",
    "REMINDER": "Remind the user about a pending task",
    "INSIGHT": "Share an insight about the user's productivity",
    "MOTIVATION": "Motivate the user to keep making progress",
    "PROGRESS": "Summarize the user's recent progress",
    "ACHIEVEMENT": "Celebrate a completed task",
}


def default_settings() -> SettingsSnapshot:
    return SettingsSnapshot(
        personality=DEFAULT_PERSONALITY,
        window_start=DEFAULT_WINDOW_START,
        window_end=DEFAULT_WINDOW_END,
        max_per_day=DEFAULT_MAX_PER_DAY,
        enabled_types=list(DEFAULT_ENABLED_TYPES),
        timezone=DEFAULT_TIMEZONE,
    )


def settings_snapshot(row) -> SettingsSnapshot:
    return SettingsSnapshot(
        personality=row.personality,
        window_start=row.quiet_hours_start,
        window_end=row.quiet_hours_end,
        max_per_day=row.max_per_day,
        enabled_types=list(row.enabled_types or []),
        timezone=row.timezone,
    )


# ---------------------------------------------------------------------------
# Task classification
# ---------------------------------------------------------------------------


def deadline_status(hours: float | None) -> str:
    if hours is None:
        return "no_deadline"
    if hours < 0:
        return "overdue"
    if hours < 1:
        return "imminent"
    if hours < 6:
        return "urgent"
    if hours < 24:
        return "approaching"
    if hours < 72:
        return "upcoming"
    return "distant"


def urgency_level(hours: float | None) -> str:
    if hours is None:
        return "none"
    if hours < 0:
        return "overdue"
    if hours < 2:
        return "critical"
    if hours < 6:
        return "high"
    if hours < 24:
        return "medium"
    if hours < 72:
        return "low"
    return "minimal"


def task_context(task: Task, now: datetime) -> TaskContext:
    hours = (task.due_at - now).total_seconds() / 3600 if task.due_at else None
    return TaskContext(
        id=task.id,
        name=task.name,
        description=task.description,
        points=task.points or 0,
        due_at=task.due_at,
        completed=bool(task.completed),
        overdue=bool(task.overdue),
        hours_until_deadline=round(hours, 2) if hours is not None else None,
        deadline_status=deadline_status(hours),
        urgency_level=urgency_level(hours),
        categories=list(task.category_names or []),
        tags=list(task.tag_names or []),
    )


# ---------------------------------------------------------------------------
# Engagement
# ---------------------------------------------------------------------------


def classify_segment(level: int, streak: int, completion_rate: float, total_tasks: int) -> str:
    if level <= 2 and total_tasks <= 5:
        return "beginner"
    if completion_rate >= 0.8 and total_tasks >= 10:
        return "power_user"
    if streak >= 7 and completion_rate >= 0.6:
        return "consistent"
    if completion_rate < 0.4 or streak == 0:
        return "at_risk"
    return "casual"


def assess_motivation(streak: int, consistency: float) -> str:
    if streak >= 14 and consistency >= 0.7:
        return "high"
    if streak >= 7 and consistency >= 0.5:
        return "medium"
    if streak == 0 or consistency < 0.3:
        return "low"
    return "medium"


def productivity_peak(hour: int | None) -> str:
    if hour is None:
        return "unknown"
    if 6 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "afternoon"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def consistency_score(completion_times: list[datetime]) -> float:
    """1 - coefficient of variation of the gaps between completions, in [0, 1]."""
    if len(completion_times) < 3:
        return 0.0
    ordered = sorted(completion_times)
    gaps = [(b - a).total_seconds() for a, b in zip(ordered, ordered[1:])]
    mean = statistics.fmean(gaps)
    if mean <= 0:
        return 0.0
    cv = statistics.pstdev(gaps) / mean
    return max(0.0, min(1.0, 1 - cv))


def engagement_score(statuses: list[str], feedback_types: list[str]) -> float:
    """0.7 * read rate + 0.3 * positive feedback share. Neutral when nothing was delivered yet."""
    delivered = [s for s in statuses if s in (NotificationStatus.SENT.value, NotificationStatus.READ.value)]
    if not delivered:
        return NEUTRAL_ENGAGEMENT
    read_rate = sum(1 for s in delivered if s == NotificationStatus.READ.value) / len(delivered)
    if feedback_types:
        feedback_share = sum(1 for f in feedback_types if f in POSITIVE_FEEDBACK_TYPES) / len(feedback_types)
    else:
        feedback_share = NEUTRAL_ENGAGEMENT
    return round(READ_RATE_WEIGHT * read_rate + FEEDBACK_WEIGHT * feedback_share, 4)


class ContextBuilder:
    def __init__(
        self,
        users: UserStore,
        tasks: TaskStore,
        notifications: NotificationStore,
        clock: Callable[[], datetime],
        engagement_cache_minutes: int = 60,
    ):
        self.users = users
        self.tasks = tasks
        self.notifications = notifications
        self._clock = clock
        self.engagement_cache = timedelta(minutes=engagement_cache_minutes)

    def load_settings(self, user_id: int) -> SettingsSnapshot:
        """Current settings; defaults when the read fails."""
        try:
            return settings_snapshot(self.users.get_settings(user_id))
        except Exception:
            logger.warning("Settings read failed for user %s; using defaults", user_id, exc_info=True)
            return default_settings()

    def build(self, request: EnqueueRequest) -> NotificationContext | None:
        """
        Raises UserNotFoundError when the user does not exist. Returns None when the linked task
        is missing or belongs to someone else.
        """
        now = self._clock()
        user = self.users.get_user(request.user_id)
        if user is None:
            raise UserNotFoundError(request.user_id)

        task_ctx = None
        if request.task_id is not None:
            task = self.tasks.get_task(request.task_id)
            if task is None or task.user_id != user.id:
                logger.info("Task %s not found for user %s; skipping notification", request.task_id, user.id)
                return None
            task_ctx = task_context(task, now)

        settings = self.load_settings(user.id)
        return NotificationContext(
            type=request.type,
            objective=request.objective or DEFAULT_OBJECTIVES[request.type.value],
            user=UserContext(
                id=user.id,
                name=user.name,
                email=user.email,
                level=user.level or 1,
                xp_points=user.xp_points or 0,
                streak=user.streak or 0,
                engagement=self.engagement_for(user, settings.timezone, now),
            ),
            settings=settings,
            now=now,
            task=task_ctx,
        )

    def engagement_for(self, user: User, tz_name: str, now: datetime) -> EngagementContext:
        try:
            cached = self.users.get_engagement_snapshot(user.id)
            if cached is not None:
                snapshot, computed_at = cached
                if computed_at is not None and now - computed_at < self.engagement_cache:
                    return EngagementContext(**snapshot)
            engagement = self.compute_engagement(user, tz_name, now)
        except Exception:
            logger.warning("Engagement context failed for user %s; using neutral", user.id, exc_info=True)
            return EngagementContext()
        try:
            self.users.save_engagement_snapshot(user.id, asdict(engagement), now)
        except Exception:
            logger.warning("Could not cache engagement context for user %s", user.id, exc_info=True)
        return engagement

    def compute_engagement(self, user: User, tz_name: str, now: datetime) -> EngagementContext:
        since = now - timedelta(days=ACTIVITY_DAYS)
        tasks = self.tasks.list_user_tasks(user.id, since)
        completed = [t for t in tasks if t.completed]
        total = len(tasks)
        completion_rate = len(completed) / total if total else 0.0
        activity = {
            "total_tasks_30d": total,
            "completed_tasks_30d": len(completed),
            "overdue_tasks_30d": sum(1 for t in tasks if t.overdue),
            "completion_rate": round(completion_rate, 4),
            "average_points_per_task": round(sum(t.points or 0 for t in tasks) / total, 2) if total else 0.0,
        }

        completion_times = [t.completed_at for t in completed if t.completed_at is not None]
        hours = Counter(to_local(ts, tz_name).hour for ts in completion_times)
        preferred_hours = [h for h, _ in hours.most_common(3)]
        consistency = consistency_score(completion_times)
        patterns = {
            "preferred_hours": preferred_hours,
            "productivity_peak": productivity_peak(preferred_hours[0] if preferred_hours else None),
            "consistency_score": round(consistency, 4),
        }

        history = self.notifications.list_by_user(user.id, since=since, limit=ENGAGEMENT_HISTORY_LIMIT)
        feedback = self.notifications.list_feedback(user.id, since=since)
        streak = user.streak or 0
        return EngagementContext(
            engagement_score=engagement_score([n.status for n in history], [f.feedback_type for f in feedback]),
            activity_metrics=activity,
            behavior_patterns=patterns,
            user_segment=classify_segment(user.level or 1, streak, completion_rate, total),
            motivation_level=assess_motivation(streak, consistency),
        )
