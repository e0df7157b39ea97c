"""Collaborator interfaces for the notification core. SQL implementations live in sql_stores."""
from datetime import datetime
from typing import Any, Protocol

from app.models.notification import Notification
from app.models.notification_settings import NotificationSettings
from app.models.task import Task
from app.models.user import User
from app.services.notifications.types import DeliveryResult, NotificationStatus, NotificationType


class UserStore(Protocol):
    def get_user(self, user_id: int) -> User | None:
        ...

    def get_settings(self, user_id: int) -> NotificationSettings:
        """Settings row for the user; created with defaults on first access."""
        ...

    def update_settings(self, user_id: int, patch: dict[str, Any]) -> NotificationSettings:
        ...

    def list_recently_active(self, since: datetime) -> list[int]:
        """Ids of users who created or completed a task since the given instant."""
        ...

    def get_engagement_snapshot(self, user_id: int) -> tuple[dict[str, Any], datetime] | None:
        ...

    def save_engagement_snapshot(self, user_id: int, snapshot: dict[str, Any], computed_at: datetime) -> None:
        ...


class TaskStore(Protocol):
    def get_task(self, task_id: int) -> Task | None:
        ...

    def list_user_tasks(self, user_id: int, since: datetime) -> list[Task]:
        ...

    def list_due_within(self, now: datetime, hours: int) -> list[Task]:
        """Incomplete tasks due in (now, now + hours] not yet flagged by the deadline sweep."""
        ...

    def mark_deadline_notified(self, task_id: int, at: datetime) -> None:
        ...

    def list_overdue(self, now: datetime) -> list[Task]:
        """Incomplete tasks past their deadline not yet marked overdue."""
        ...

    def mark_overdue(self, task_id: int) -> None:
        ...


class NotificationStore(Protocol):
    def rollback(self) -> None:
        """Discard a failed unit of work so the next item starts clean."""
        ...

    def create(self, values: dict[str, Any]) -> Notification:
        ...

    def get(self, notification_id: int) -> Notification | None:
        ...

    def update_status(
        self,
        notification_id: int,
        status: NotificationStatus,
        extra: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> Notification:
        """
        Apply a lifecycle transition. Raises InvalidTransitionError for moves the lifecycle
        forbids and NotificationNotFoundError for unknown ids. extra may carry scheduled_at
        and metadata only.
        """
        ...

    def list_pending(self, limit: int, now: datetime) -> list[Notification]:
        """PENDING with scheduled_at <= now; priority desc, then scheduled_at asc."""
        ...

    def list_by_user(
        self,
        user_id: int,
        status: NotificationStatus | None = None,
        type: NotificationType | None = None,
        limit: int | None = None,
        since: datetime | None = None,
    ) -> list[Notification]:
        ...

    def list_recent_by_user_and_type(
        self, user_id: int, type: NotificationType, since: datetime
    ) -> list[Notification]:
        ...

    def count_sent_today(self, user_id: int, day_start: datetime, day_end: datetime) -> int:
        """Delivered notifications (sent_at in [day_start, day_end)), whatever their status now."""
        ...

    def delete_older_than(self, days: int, statuses: list[NotificationStatus], now: datetime) -> int:
        ...

    def save_feedback(
        self, notification_id: int, user_id: int, feedback_type: str, comment: str | None, now: datetime
    ) -> Any:
        ...

    def list_feedback(self, user_id: int, since: datetime | None = None) -> list[Any]:
        ...


class DeliveryTransport(Protocol):
    """Push delivery. Raises on transport-level failure; per-device failures come back in the result."""

    async def send(self, user_id: int, payload: dict[str, Any]) -> DeliveryResult:
        ...
