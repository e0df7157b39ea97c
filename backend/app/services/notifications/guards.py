"""
Soft checks run by enqueue before any content is generated. Both fail open: a storage error
lets the notification through rather than silently dropping it.
"""
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from app.services.notifications.stores import NotificationStore, UserStore
from app.services.notifications.time_window import local_day_bounds
from app.services.notifications.types import EnqueueRequest

logger = logging.getLogger(__name__)


class DuplicateGuard:
    """Same (user, task, type) created within the cooldown is a duplicate. Task-less requests never are."""

    def __init__(self, notifications: NotificationStore, cooldown_minutes: int, clock: Callable[[], datetime]):
        self.notifications = notifications
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self._clock = clock

    def is_duplicate(self, request: EnqueueRequest) -> bool:
        if request.task_id is None:
            return False
        since = self._clock() - self.cooldown
        try:
            recent = self.notifications.list_recent_by_user_and_type(request.user_id, request.type, since)
        except Exception:
            logger.warning(
                "Duplicate lookup failed for user %s task %s; allowing",
                request.user_id,
                request.task_id,
                exc_info=True,
            )
            return False
        return any(n.task_id == request.task_id for n in recent)


class RateLimiter:
    """At most max_per_day SENT notifications per user-local calendar day. max_per_day <= 0 blocks all."""

    def __init__(self, users: UserStore, notifications: NotificationStore, clock: Callable[[], datetime]):
        self.users = users
        self.notifications = notifications
        self._clock = clock

    def can_send(self, user_id: int) -> bool:
        try:
            settings = self.users.get_settings(user_id)
        except Exception:
            logger.warning("Settings lookup failed for user %s; allowing", user_id, exc_info=True)
            return True
        max_per_day = settings.max_per_day or 0
        if max_per_day <= 0:
            return False
        try:
            day_start, day_end = local_day_bounds(self._clock(), settings.timezone)
            sent_today = self.notifications.count_sent_today(user_id, day_start, day_end)
        except Exception:
            logger.warning("Sent-today count failed for user %s; allowing", user_id, exc_info=True)
            return True
        return sent_today < max_per_day
