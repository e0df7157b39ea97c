"""Tests for NotificationService: settings validation, inbox actions, feedback and stats."""

from datetime import timedelta

import pytest

from app.core.errors import (
    InvalidFeedbackError,
    InvalidSettingsError,
    InvalidTransitionError,
    NotificationNotFoundError,
    UserNotFoundError,
)
from app.services.notification_service import NotificationService, validate_settings_patch
from app.services.notifications.sql_stores import SqlNotificationStore
from app.services.notifications.types import NotificationStatus, NotificationType
from tests.fakes import BASE_NOW


@pytest.fixture
def service(test_db_session, clock):
    return NotificationService(test_db_session, clock=clock)


@pytest.fixture
def make_notification(test_db_session):
    store = SqlNotificationStore(test_db_session)

    def _create(user, status=NotificationStatus.SENT, priority=5, type_=NotificationType.REMINDER, ai=False, created_at=BASE_NOW):
        row = store.create(
            {
                "user_id": user.id,
                "type": type_,
                "title": "Title",
                "message": "Message",
                "priority": priority,
                "scheduled_at": created_at,
                "created_at": created_at,
                "metadata": {"generated_with_ai": ai, "tone": "casual"},
            }
        )
        if status in (NotificationStatus.SENT, NotificationStatus.READ):
            row = store.update_status(row.id, NotificationStatus.SENT, now=created_at)
        if status != NotificationStatus.PENDING and status != NotificationStatus.SENT:
            row = store.update_status(row.id, status, now=created_at)
        return row

    return _create


class TestValidateSettingsPatch:
    def test_normalizes_valid_patch(self):
        clean = validate_settings_patch(
            {
                "quiet_hours_start": "7:05",
                "quiet_hours_end": "21:30:00",
                "personality": "formal",
                "max_per_day": 0,
                "enabled_types": ["REMINDER", "ALERT", "ALERT"],
                "timezone": "Europe/Lisbon",
            }
        )
        assert clean == {
            "quiet_hours_start": "07:05",
            "quiet_hours_end": "21:30",
            "personality": "formal",
            "max_per_day": 0,
            "enabled_types": ["ALERT", "REMINDER"],
            "timezone": "Europe/Lisbon",
        }

    @pytest.mark.parametrize(
        "patch",
        [
            {"quiet_hours_start": "25:00"},
            {"personality": "sarcastic"},
            {"max_per_day": -1},
            {"max_per_day": True},
            {"max_per_day": "3"},
            {"enabled_types": ["SPAM"]},
            {"timezone": "Mars/Olympus"},
            {"volume": 3},
        ],
    )
    def test_rejects_invalid(self, patch):
        with pytest.raises(InvalidSettingsError):
            validate_settings_patch(patch)


class TestSettings:
    def test_get_creates_defaults(self, service, make_user):
        user = make_user(with_settings=False)
        settings = service.get_settings(user.id)
        assert settings["user_id"] == user.id
        assert settings["quiet_hours_start"] == "07:00"
        assert settings["timezone"] == "America/Sao_Paulo"

    def test_partial_update(self, service, make_user):
        user = make_user()
        updated = service.update_settings(user.id, {"max_per_day": 1})
        assert updated["max_per_day"] == 1
        assert updated["personality"] == "casual"
        assert updated["updated_at"] is not None

    def test_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            service.get_settings(999)
        with pytest.raises(UserNotFoundError):
            service.update_settings(999, {"max_per_day": 1})


class TestInbox:
    def test_list_filters_and_clamps_limit(self, service, make_user, make_notification):
        user = make_user()
        other = make_user()
        make_notification(user, type_=NotificationType.ALERT)
        make_notification(user, status=NotificationStatus.PENDING)
        make_notification(other)

        assert len(service.list_notifications(user.id)) == 2
        assert len(service.list_notifications(user.id, type=NotificationType.ALERT)) == 1
        assert len(service.list_notifications(user.id, status=NotificationStatus.PENDING)) == 1
        assert len(service.list_notifications(user.id, limit=0)) == 1
        first = service.list_notifications(user.id)[0]
        assert first["tone"] == "casual"
        assert first["generated_with_ai"] is False

    def test_mark_read_is_idempotent(self, service, make_user, make_notification, clock):
        user = make_user()
        row = make_notification(user)

        first = service.mark_read(user.id, row.id)
        clock.advance(minutes=10)
        second = service.mark_read(user.id, row.id)

        assert first["status"] == "READ"
        assert second["read_at"] == first["read_at"] == BASE_NOW.isoformat()

    def test_mark_read_pending_is_invalid(self, service, make_user, make_notification):
        user = make_user()
        row = make_notification(user, status=NotificationStatus.PENDING)
        with pytest.raises(InvalidTransitionError):
            service.mark_read(user.id, row.id)

    def test_dismiss(self, service, make_user, make_notification):
        user = make_user()
        row = make_notification(user, status=NotificationStatus.PENDING)
        assert service.dismiss(user.id, row.id)["status"] == "DISMISSED"
        with pytest.raises(InvalidTransitionError):
            service.dismiss(user.id, row.id)

    def test_other_users_notification_is_not_found(self, service, make_user, make_notification):
        owner = make_user()
        intruder = make_user()
        row = make_notification(owner)
        with pytest.raises(NotificationNotFoundError):
            service.mark_read(intruder.id, row.id)
        with pytest.raises(NotificationNotFoundError):
            service.dismiss(intruder.id, row.id)
        with pytest.raises(NotificationNotFoundError):
            service.record_feedback(intruder.id, row.id, "helpful")


class TestFeedback:
    def test_records_feedback(self, service, make_user, make_notification):
        user = make_user()
        row = make_notification(user)
        result = service.record_feedback(user.id, row.id, "too_early", "  at 6am?  ")
        assert result["feedback_type"] == "too_early"
        assert result["comment"] == "at 6am?"
        assert result["created_at"] == BASE_NOW.isoformat()

    def test_blank_comment_is_null(self, service, make_user, make_notification):
        user = make_user()
        row = make_notification(user)
        assert service.record_feedback(user.id, row.id, "helpful", "   ")["comment"] is None

    def test_unknown_feedback_type(self, service, make_user, make_notification):
        user = make_user()
        row = make_notification(user)
        with pytest.raises(InvalidFeedbackError):
            service.record_feedback(user.id, row.id, "meh")


class TestStats:
    def test_counts(self, service, make_user, make_notification):
        user = make_user()
        make_notification(user, status=NotificationStatus.READ, priority=9, type_=NotificationType.ALERT, ai=True)
        make_notification(user, status=NotificationStatus.SENT, priority=6)
        make_notification(user, status=NotificationStatus.FAILED, priority=2)
        make_notification(user, status=NotificationStatus.READ, created_at=BASE_NOW - timedelta(days=45))

        stats = service.get_stats(user.id)

        assert stats["total"] == 3
        assert stats["by_status"]["READ"] == 1
        assert stats["by_status"]["PENDING"] == 0
        assert stats["by_type"] == {"ALERT": 1, "REMINDER": 2}
        assert stats["by_priority"] == {"high": 1, "medium": 1, "low": 1}
        assert stats["read_rate"] == 0.5
        assert stats["ai_generated"] == 1

    def test_empty(self, service, make_user):
        stats = service.get_stats(make_user().id)
        assert stats["total"] == 0
        assert stats["read_rate"] == 0.0
