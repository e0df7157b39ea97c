"""Tests for DuplicateGuard and RateLimiter (including fail-open behavior)."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

from app.services.notifications.guards import DuplicateGuard, RateLimiter
from app.services.notifications.types import EnqueueRequest, NotificationType

BASE_NOW = datetime(2026, 3, 10, 14, 0, tzinfo=timezone.utc)


def _request(task_id=7, type_=NotificationType.REMINDER):
    return EnqueueRequest(user_id=1, task_id=task_id, type=type_)


class TestDuplicateGuard:
    def test_same_task_within_cooldown_is_duplicate(self):
        store = MagicMock()
        store.list_recent_by_user_and_type.return_value = [SimpleNamespace(task_id=7)]
        guard = DuplicateGuard(store, cooldown_minutes=120, clock=lambda: BASE_NOW)

        assert guard.is_duplicate(_request()) is True
        store.list_recent_by_user_and_type.assert_called_once_with(
            1, NotificationType.REMINDER, BASE_NOW - timedelta(minutes=120)
        )

    def test_other_task_is_not_duplicate(self):
        store = MagicMock()
        store.list_recent_by_user_and_type.return_value = [SimpleNamespace(task_id=8), SimpleNamespace(task_id=None)]
        guard = DuplicateGuard(store, cooldown_minutes=120, clock=lambda: BASE_NOW)
        assert guard.is_duplicate(_request()) is False

    def test_taskless_request_never_duplicate(self):
        store = MagicMock()
        guard = DuplicateGuard(store, cooldown_minutes=120, clock=lambda: BASE_NOW)
        assert guard.is_duplicate(_request(task_id=None)) is False
        store.list_recent_by_user_and_type.assert_not_called()

    def test_store_error_fails_open(self):
        store = MagicMock()
        store.list_recent_by_user_and_type.side_effect = RuntimeError("db down")
        guard = DuplicateGuard(store, cooldown_minutes=120, clock=lambda: BASE_NOW)
        assert guard.is_duplicate(_request()) is False


class TestRateLimiter:
    def _limiter(self, max_per_day=3, sent=0, tz="UTC"):
        users = MagicMock()
        users.get_settings.return_value = SimpleNamespace(max_per_day=max_per_day, timezone=tz)
        notifications = MagicMock()
        notifications.count_sent_today.return_value = sent
        return RateLimiter(users, notifications, clock=lambda: BASE_NOW), users, notifications

    def test_under_limit(self):
        limiter, _, notifications = self._limiter(max_per_day=3, sent=2)
        assert limiter.can_send(1) is True
        day_start, day_end = notifications.count_sent_today.call_args.args[1:]
        assert day_start == BASE_NOW.replace(hour=0)
        assert day_end - day_start == timedelta(days=1)

    def test_at_limit(self):
        limiter, _, _ = self._limiter(max_per_day=3, sent=3)
        assert limiter.can_send(1) is False

    def test_zero_blocks_everything(self):
        limiter, _, notifications = self._limiter(max_per_day=0, sent=0)
        assert limiter.can_send(1) is False
        notifications.count_sent_today.assert_not_called()

    def test_day_is_user_local(self):
        limiter, _, notifications = self._limiter(tz="America/Sao_Paulo")
        limiter.can_send(1)
        day_start = notifications.count_sent_today.call_args.args[1]
        # 14:00 UTC is 11:00 in Sao Paulo; local midnight is 03:00 UTC
        assert day_start.astimezone(timezone.utc) == BASE_NOW.replace(hour=3)

    def test_settings_error_fails_open(self):
        limiter, users, _ = self._limiter()
        users.get_settings.side_effect = RuntimeError("db down")
        assert limiter.can_send(1) is True

    def test_count_error_fails_open(self):
        limiter, _, notifications = self._limiter()
        notifications.count_sent_today.side_effect = RuntimeError("db down")
        assert limiter.can_send(1) is True
