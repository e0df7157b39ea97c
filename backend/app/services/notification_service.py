"""
User-facing notification operations: settings, inbox, read / dismiss, feedback, stats.
Routes call these; ownership is enforced here (another user's notification is "not found").
"""
import logging
from collections import Counter
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.core.constants import FEEDBACK_TYPES, PERSONALITIES
from app.core.errors import (
    InvalidFeedbackError,
    InvalidSettingsError,
    NotificationNotFoundError,
    UserNotFoundError,
)
from app.models.notification import Notification
from app.services.notifications.sql_stores import SqlNotificationStore, SqlUserStore
from app.services.notifications.time_window import parse_hhmm
from app.services.notifications.types import NotificationStatus, NotificationType

logger = logging.getLogger(__name__)

STATS_DAYS = 30
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def settings_to_dict(row) -> dict[str, Any]:
    return {
        "user_id": row.user_id,
        "personality": row.personality,
        "quiet_hours_start": row.quiet_hours_start,
        "quiet_hours_end": row.quiet_hours_end,
        "max_per_day": row.max_per_day,
        "enabled_types": list(row.enabled_types or []),
        "timezone": row.timezone,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def notification_to_dict(n: Notification) -> dict[str, Any]:
    meta = n.payload or {}
    return {
        "id": n.id,
        "user_id": n.user_id,
        "task_id": n.task_id,
        "type": n.type,
        "title": n.title,
        "message": n.message,
        "priority": n.priority,
        "status": n.status,
        "scheduled_at": n.scheduled_at.isoformat() if n.scheduled_at else None,
        "sent_at": n.sent_at.isoformat() if n.sent_at else None,
        "read_at": n.read_at.isoformat() if n.read_at else None,
        "created_at": n.created_at.isoformat() if n.created_at else None,
        "tone": meta.get("tone"),
        "emoji": meta.get("emoji"),
        "generated_with_ai": bool(meta.get("generated_with_ai")),
    }


def validate_settings_patch(patch: dict[str, Any]) -> dict[str, Any]:
    """Normalized copy of patch. Raises InvalidSettingsError on the first bad field."""
    clean: dict[str, Any] = {}
    for key in ("quiet_hours_start", "quiet_hours_end"):
        if key in patch:
            try:
                clean[key] = parse_hhmm(patch[key]).strftime("%H:%M")
            except ValueError as e:
                raise InvalidSettingsError(f"{key}: {e}") from None
    if "personality" in patch:
        if patch["personality"] not in PERSONALITIES:
            raise InvalidSettingsError(f"personality must be one of {', '.join(PERSONALITIES)}")
        clean["personality"] = patch["personality"]
    if "max_per_day" in patch:
        value = patch["max_per_day"]
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise InvalidSettingsError("max_per_day must be an integer >= 0")
        clean["max_per_day"] = value
    if "enabled_types" in patch:
        try:
            clean["enabled_types"] = sorted({NotificationType(t).value for t in patch["enabled_types"]})
        except (TypeError, ValueError):
            raise InvalidSettingsError(
                f"enabled_types must be a subset of {', '.join(t.value for t in NotificationType)}"
            ) from None
    if "timezone" in patch:
        name = patch["timezone"]
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, TypeError, ValueError):
            raise InvalidSettingsError(f"Unknown timezone {name!r}") from None
        clean["timezone"] = name
    unknown = set(patch) - set(clean)
    if unknown:
        raise InvalidSettingsError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")
    return clean


class NotificationService:
    def __init__(self, db: Session, clock: Callable[[], datetime] = _utcnow):
        self.users = SqlUserStore(db)
        self.notifications = SqlNotificationStore(db)
        self._clock = clock

    def _require_user(self, user_id: int) -> None:
        if self.users.get_user(user_id) is None:
            raise UserNotFoundError(user_id)

    def _owned(self, user_id: int, notification_id: int) -> Notification:
        row = self.notifications.get(notification_id)
        if row is None or row.user_id != user_id:
            raise NotificationNotFoundError(notification_id)
        return row

    # Settings

    def get_settings(self, user_id: int) -> dict[str, Any]:
        self._require_user(user_id)
        return settings_to_dict(self.users.get_settings(user_id))

    def update_settings(self, user_id: int, patch: dict[str, Any]) -> dict[str, Any]:
        self._require_user(user_id)
        clean = validate_settings_patch(patch)
        row = self.users.update_settings(user_id, clean)
        logger.info("Updated notification settings for user %s: %s", user_id, sorted(clean))
        return settings_to_dict(row)

    # Inbox

    def list_notifications(
        self,
        user_id: int,
        status: NotificationStatus | None = None,
        type: NotificationType | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[dict[str, Any]]:
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        rows = self.notifications.list_by_user(user_id, status=status, type=type, limit=limit)
        return [notification_to_dict(n) for n in rows]

    def mark_read(self, user_id: int, notification_id: int) -> dict[str, Any]:
        row = self._owned(user_id, notification_id)
        if row.status == NotificationStatus.READ.value:
            return notification_to_dict(row)
        row = self.notifications.update_status(notification_id, NotificationStatus.READ, now=self._clock())
        return notification_to_dict(row)

    def dismiss(self, user_id: int, notification_id: int) -> dict[str, Any]:
        self._owned(user_id, notification_id)
        row = self.notifications.update_status(notification_id, NotificationStatus.DISMISSED, now=self._clock())
        return notification_to_dict(row)

    def record_feedback(
        self, user_id: int, notification_id: int, feedback_type: str, comment: str | None = None
    ) -> dict[str, Any]:
        if feedback_type not in FEEDBACK_TYPES:
            raise InvalidFeedbackError(f"feedback_type must be one of {', '.join(FEEDBACK_TYPES)}")
        self._owned(user_id, notification_id)
        row = self.notifications.save_feedback(
            notification_id, user_id, feedback_type, (comment or "").strip() or None, self._clock()
        )
        logger.info("Feedback %s on notification %s from user %s", feedback_type, notification_id, user_id)
        return {
            "id": row.id,
            "notification_id": notification_id,
            "feedback_type": row.feedback_type,
            "comment": row.comment,
            "created_at": row.created_at.isoformat(),
        }

    # Stats

    def get_stats(self, user_id: int, days: int = STATS_DAYS) -> dict[str, Any]:
        since = self._clock() - timedelta(days=days)
        rows = self.notifications.list_by_user(user_id, since=since)
        by_status = Counter(n.status for n in rows)
        delivered = by_status[NotificationStatus.SENT.value] + by_status[NotificationStatus.READ.value]
        priorities = Counter(
            "high" if n.priority >= 8 else "medium" if n.priority >= 5 else "low" for n in rows
        )
        return {
            "days": days,
            "total": len(rows),
            "by_status": {s.value: by_status[s.value] for s in NotificationStatus},
            "by_type": dict(Counter(n.type for n in rows)),
            "by_priority": {k: priorities[k] for k in ("high", "medium", "low")},
            "read_rate": round(by_status[NotificationStatus.READ.value] / delivered, 4) if delivered else 0.0,
            "ai_generated": sum(1 for n in rows if (n.payload or {}).get("generated_with_ai")),
        }
