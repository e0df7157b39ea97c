"""
SQLAlchemy implementations of the notification stores. Each store wraps one Session and
commits its own writes; reads never commit.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import false, func, or_
from sqlalchemy.orm import Session

from app.core.constants import (
    DEFAULT_ENABLED_TYPES,
    DEFAULT_MAX_PER_DAY,
    DEFAULT_PERSONALITY,
    DEFAULT_TIMEZONE,
    DEFAULT_WINDOW_END,
    DEFAULT_WINDOW_START,
)
from app.core.errors import InvalidTransitionError, NotificationNotFoundError
from app.models.notification import Notification
from app.models.notification_feedback import NotificationFeedback
from app.models.notification_settings import NotificationSettings
from app.models.task import Task
from app.models.user import User
from app.models.user_engagement_context import UserEngagementContext
from app.services.notifications.types import (
    NotificationMetadata,
    NotificationStatus,
    NotificationType,
    can_transition,
)

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = ("personality", "quiet_hours_start", "quiet_hours_end", "max_per_day", "enabled_types", "timezone")
STATUS_EXTRA_FIELDS = frozenset({"scheduled_at", "metadata"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


def _commit(db: Session) -> None:
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise


class SqlUserStore:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User | None:
        return self.db.get(User, user_id)

    def get_settings(self, user_id: int) -> NotificationSettings:
        row = self.db.query(NotificationSettings).filter(NotificationSettings.user_id == user_id).first()
        if row is not None:
            return row
        row = NotificationSettings(
            user_id=user_id,
            personality=DEFAULT_PERSONALITY,
            quiet_hours_start=DEFAULT_WINDOW_START,
            quiet_hours_end=DEFAULT_WINDOW_END,
            max_per_day=DEFAULT_MAX_PER_DAY,
            enabled_types=list(DEFAULT_ENABLED_TYPES),
            timezone=DEFAULT_TIMEZONE,
            updated_at=_utcnow(),
        )
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        logger.info("Created default notification settings for user %s", user_id)
        return row

    def update_settings(self, user_id: int, patch: dict[str, Any]) -> NotificationSettings:
        row = self.get_settings(user_id)
        for key, value in patch.items():
            if key not in SETTINGS_FIELDS:
                raise ValueError(f"Unknown settings field {key!r}")
            if key == "enabled_types":
                value = [_value(t) for t in value]
            setattr(row, key, value)
        row.updated_at = _utcnow()
        _commit(self.db)
        self.db.refresh(row)
        return row

    def list_recently_active(self, since: datetime) -> list[int]:
        rows = (
            self.db.query(Task.user_id)
            .filter(or_(Task.created_at >= since, Task.completed_at >= since))
            .distinct()
            .order_by(Task.user_id)
            .all()
        )
        return [r[0] for r in rows]

    def get_engagement_snapshot(self, user_id: int) -> tuple[dict[str, Any], datetime] | None:
        row = self.db.query(UserEngagementContext).filter(UserEngagementContext.user_id == user_id).first()
        if row is None:
            return None
        return dict(row.snapshot or {}), row.computed_at

    def save_engagement_snapshot(self, user_id: int, snapshot: dict[str, Any], computed_at: datetime) -> None:
        row = self.db.query(UserEngagementContext).filter(UserEngagementContext.user_id == user_id).first()
        if row is None:
            row = UserEngagementContext(user_id=user_id)
            self.db.add(row)
        row.snapshot = snapshot
        row.computed_at = computed_at
        _commit(self.db)


class SqlTaskStore:
    def __init__(self, db: Session):
        self.db = db

    def get_task(self, task_id: int) -> Task | None:
        return self.db.get(Task, task_id)

    def list_user_tasks(self, user_id: int, since: datetime) -> list[Task]:
        return (
            self.db.query(Task)
            .filter(Task.user_id == user_id, Task.created_at >= since)
            .order_by(Task.created_at.desc())
            .all()
        )

    def list_due_within(self, now: datetime, hours: int) -> list[Task]:
        return (
            self.db.query(Task)
            .filter(
                Task.completed == false(),
                Task.due_at.isnot(None),
                Task.due_at > now,
                Task.due_at <= now + timedelta(hours=hours),
                Task.deadline_notified_at.is_(None),
            )
            .order_by(Task.due_at)
            .all()
        )

    def mark_deadline_notified(self, task_id: int, at: datetime) -> None:
        self.db.query(Task).filter(Task.id == task_id).update(
            {Task.deadline_notified_at: at}, synchronize_session=False
        )
        _commit(self.db)

    def list_overdue(self, now: datetime) -> list[Task]:
        return (
            self.db.query(Task)
            .filter(
                Task.completed == false(),
                Task.overdue == false(),
                Task.due_at.isnot(None),
                Task.due_at < now,
            )
            .order_by(Task.due_at)
            .all()
        )

    def mark_overdue(self, task_id: int) -> None:
        self.db.query(Task).filter(Task.id == task_id).update({Task.overdue: True}, synchronize_session=False)
        _commit(self.db)


class SqlNotificationStore:
    def __init__(self, db: Session):
        self.db = db

    def rollback(self) -> None:
        self.db.rollback()

    def create(self, values: dict[str, Any]) -> Notification:
        data = dict(values)
        payload = NotificationMetadata.from_row(data.pop("metadata", None))
        row = Notification(
            user_id=data["user_id"],
            task_id=data.get("task_id"),
            type=_value(data["type"]),
            title=data["title"],
            message=data["message"],
            priority=data["priority"],
            scheduled_at=data["scheduled_at"],
            status=NotificationStatus.PENDING.value,
            created_at=data.get("created_at") or _utcnow(),
            payload=payload.model_dump(mode="json"),
        )
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return row

    def get(self, notification_id: int) -> Notification | None:
        return self.db.get(Notification, notification_id)

    def update_status(
        self,
        notification_id: int,
        status: NotificationStatus,
        extra: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Notification:
        extra = extra or {}
        unknown = set(extra) - STATUS_EXTRA_FIELDS
        if unknown:
            raise ValueError(f"Unsupported fields for status update: {sorted(unknown)}")
        row = self.get(notification_id)
        if row is None:
            raise NotificationNotFoundError(notification_id)
        target = NotificationStatus(status)
        if not can_transition(row.status, target):
            raise InvalidTransitionError(row.status, target.value)
        now = now or _utcnow()
        row.status = target.value
        if target == NotificationStatus.SENT and row.sent_at is None:
            row.sent_at = now
        if target == NotificationStatus.READ and row.read_at is None:
            row.read_at = now
        if "scheduled_at" in extra:
            row.scheduled_at = extra["scheduled_at"]
        if "metadata" in extra:
            meta = extra["metadata"]
            if isinstance(meta, NotificationMetadata):
                meta = meta.model_dump(mode="json")
            row.payload = NotificationMetadata.from_row(meta).model_dump(mode="json")
        row.updated_at = now
        _commit(self.db)
        self.db.refresh(row)
        return row

    def list_pending(self, limit: int, now: datetime) -> list[Notification]:
        return (
            self.db.query(Notification)
            .filter(
                Notification.status == NotificationStatus.PENDING.value,
                Notification.scheduled_at <= now,
            )
            .order_by(Notification.priority.desc(), Notification.scheduled_at.asc(), Notification.id.asc())
            .limit(limit)
            .all()
        )

    def list_by_user(
        self,
        user_id: int,
        status: NotificationStatus | None = None,
        type: NotificationType | None = None,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[Notification]:
        q = self.db.query(Notification).filter(Notification.user_id == user_id)
        if status is not None:
            q = q.filter(Notification.status == _value(status))
        if type is not None:
            q = q.filter(Notification.type == _value(type))
        if since is not None:
            q = q.filter(Notification.created_at >= since)
        q = q.order_by(Notification.created_at.desc(), Notification.id.desc())
        if limit is not None:
            q = q.limit(limit)
        return q.all()

    def list_recent_by_user_and_type(
        self, user_id: int, type: NotificationType, since: datetime
    ) -> list[Notification]:
        return (
            self.db.query(Notification)
            .filter(
                Notification.user_id == user_id,
                Notification.type == _value(type),
                Notification.created_at >= since,
            )
            .order_by(Notification.created_at.desc())
            .all()
        )

    def count_sent_today(self, user_id: int, day_start: datetime, day_end: datetime) -> int:
        return (
            self.db.query(func.count(Notification.id))
            .filter(
                Notification.user_id == user_id,
                Notification.sent_at >= day_start,
                Notification.sent_at < day_end,
            )
            .scalar()
            or 0
        )

    def delete_older_than(self, days: int, statuses: list[NotificationStatus], now: datetime) -> int:
        cutoff = now - timedelta(days=days)
        ids = [
            r[0]
            for r in self.db.query(Notification.id)
            .filter(
                Notification.created_at < cutoff,
                Notification.status.in_([_value(s) for s in statuses]),
            )
            .all()
        ]
        if not ids:
            return 0
        self.db.query(NotificationFeedback).filter(NotificationFeedback.notification_id.in_(ids)).delete(
            synchronize_session=False
        )
        deleted = self.db.query(Notification).filter(Notification.id.in_(ids)).delete(synchronize_session=False)
        _commit(self.db)
        return deleted

    def save_feedback(
        self, notification_id: int, user_id: int, feedback_type: str, comment: str | None, now: datetime
    ) -> NotificationFeedback:
        row = NotificationFeedback(
            notification_id=notification_id,
            user_id=user_id,
            feedback_type=feedback_type,
            comment=comment,
            created_at=now,
        )
        self.db.add(row)
        _commit(self.db)
        self.db.refresh(row)
        return row

    def list_feedback(self, user_id: int, since: datetime | None = None) -> list[NotificationFeedback]:
        q = self.db.query(NotificationFeedback).filter(NotificationFeedback.user_id == user_id)
        if since is not None:
            q = q.filter(NotificationFeedback.created_at >= since)
        return q.order_by(NotificationFeedback.created_at.desc()).all()
