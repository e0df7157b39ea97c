"""Tests for context building: task classification, engagement signals and caching."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.core.errors import UserNotFoundError
from app.services.notifications.context import (
    ContextBuilder,
    assess_motivation,
    classify_segment,
    consistency_score,
    deadline_status,
    engagement_score,
    productivity_peak,
    urgency_level,
)
from app.services.notifications.sql_stores import SqlNotificationStore, SqlTaskStore, SqlUserStore
from app.services.notifications.types import EnqueueRequest, NotificationStatus, NotificationType
from tests.fakes import BASE_NOW


@pytest.fixture
def builder(test_db_session, clock):
    return ContextBuilder(
        SqlUserStore(test_db_session),
        SqlTaskStore(test_db_session),
        SqlNotificationStore(test_db_session),
        clock,
        engagement_cache_minutes=60,
    )


class TestClassifiers:
    @pytest.mark.parametrize(
        "hours, status, urgency",
        [
            (None, "no_deadline", "none"),
            (-2, "overdue", "overdue"),
            (0.5, "imminent", "critical"),
            (3, "urgent", "high"),
            (12, "approaching", "medium"),
            (48, "upcoming", "low"),
            (200, "distant", "minimal"),
        ],
    )
    def test_deadline_labels(self, hours, status, urgency):
        assert deadline_status(hours) == status
        assert urgency_level(hours) == urgency

    @pytest.mark.parametrize(
        "level, streak, rate, total, expected",
        [
            (1, 0, 0.0, 3, "beginner"),
            (5, 2, 0.9, 12, "power_user"),
            (5, 8, 0.7, 8, "consistent"),
            (5, 3, 0.2, 8, "at_risk"),
            (5, 3, 0.5, 8, "casual"),
        ],
    )
    def test_segments(self, level, streak, rate, total, expected):
        assert classify_segment(level, streak, rate, total) == expected

    def test_motivation(self):
        assert assess_motivation(20, 0.8) == "high"
        assert assess_motivation(8, 0.6) == "medium"
        assert assess_motivation(0, 0.9) == "low"
        assert assess_motivation(3, 0.4) == "medium"

    def test_productivity_peak(self):
        assert productivity_peak(None) == "unknown"
        assert productivity_peak(7) == "morning"
        assert productivity_peak(13) == "afternoon"
        assert productivity_peak(19) == "evening"
        assert productivity_peak(2) == "night"

    def test_consistency(self):
        regular = [BASE_NOW - timedelta(days=d) for d in (1, 2, 3, 4)]
        assert consistency_score(regular) == pytest.approx(1.0)
        assert consistency_score(regular[:2]) == 0.0
        irregular = [BASE_NOW, BASE_NOW - timedelta(hours=1), BASE_NOW - timedelta(days=10)]
        assert consistency_score(irregular) < 0.5

    def test_engagement_score(self):
        assert engagement_score([], []) == 0.5
        assert engagement_score(["PENDING", "FAILED"], ["helpful"]) == 0.5
        # read rate 1/2, no feedback -> 0.7*0.5 + 0.3*0.5
        assert engagement_score(["SENT", "READ"], []) == pytest.approx(0.5)
        assert engagement_score(["READ", "READ"], ["helpful", "annoying"]) == pytest.approx(0.85)


class TestContextBuilder:
    def test_build_with_task(self, builder, make_user, make_task):
        user = make_user(name="Ana", level=3, streak=4)
        task = make_task(user, name="Slides", points=12, due_at=BASE_NOW + timedelta(hours=3), tag_names=["q1"])

        ctx = builder.build(EnqueueRequest(user_id=user.id, task_id=task.id, type=NotificationType.ALERT))

        assert ctx.user.name == "Ana"
        assert ctx.user.level == 3
        assert ctx.task.hours_until_deadline == 3.0
        assert ctx.task.deadline_status == "urgent"
        assert ctx.task.categories == ["work"]
        assert ctx.task.tags == ["q1"]
        assert ctx.objective  # default objective for ALERT
        assert ctx.settings.timezone == "UTC"
        assert ctx.now == BASE_NOW

    def test_unknown_user(self, builder):
        with pytest.raises(UserNotFoundError):
            builder.build(EnqueueRequest(user_id=404, type=NotificationType.ALERT))

    def test_missing_task(self, builder, make_user):
        user = make_user()
        assert builder.build(EnqueueRequest(user_id=user.id, task_id=404, type=NotificationType.ALERT)) is None

    def test_engagement_from_history(self, builder, make_user, make_task, test_db_session):
        user = make_user(level=4, streak=3)
        for days in (1, 2, 3):
            make_task(
                user,
                completed=True,
                completed_at=BASE_NOW.replace(hour=9) - timedelta(days=days),
                created_at=BASE_NOW - timedelta(days=days + 1),
            )
        make_task(user, created_at=BASE_NOW - timedelta(days=1))
        store = SqlNotificationStore(test_db_session)
        row = store.create(
            {
                "user_id": user.id,
                "type": "REMINDER",
                "title": "t",
                "message": "m",
                "priority": 5,
                "scheduled_at": BASE_NOW - timedelta(days=1),
                "created_at": BASE_NOW - timedelta(days=1),
            }
        )
        store.update_status(row.id, NotificationStatus.SENT, now=BASE_NOW - timedelta(days=1))
        store.update_status(row.id, NotificationStatus.READ, now=BASE_NOW - timedelta(days=1))

        engagement = builder.engagement_for(user, "UTC", BASE_NOW)

        assert engagement.activity_metrics["total_tasks_30d"] == 4
        assert engagement.activity_metrics["completion_rate"] == 0.75
        assert engagement.behavior_patterns["preferred_hours"] == [9]
        assert engagement.behavior_patterns["productivity_peak"] == "morning"
        # read rate 1.0, no feedback
        assert engagement.engagement_score == pytest.approx(0.85)

    def test_engagement_is_cached(self, clock):
        users = MagicMock()
        user = MagicMock(id=1, streak=0, level=1)
        users.get_engagement_snapshot.return_value = ({"engagement_score": 0.9, "user_segment": "power_user"}, BASE_NOW)
        builder = ContextBuilder(users, MagicMock(), MagicMock(), clock, engagement_cache_minutes=60)

        engagement = builder.engagement_for(user, "UTC", BASE_NOW + timedelta(minutes=30))

        assert engagement.engagement_score == 0.9
        assert engagement.user_segment == "power_user"
        users.save_engagement_snapshot.assert_not_called()

    def test_stale_cache_is_recomputed(self, builder, make_user, test_db_session):
        user = make_user()
        users = SqlUserStore(test_db_session)
        users.save_engagement_snapshot(user.id, {"engagement_score": 0.1}, BASE_NOW - timedelta(hours=2))

        engagement = builder.engagement_for(user, "UTC", BASE_NOW)

        assert engagement.engagement_score == 0.5
        snapshot, computed_at = users.get_engagement_snapshot(user.id)
        assert computed_at == BASE_NOW
        assert snapshot["engagement_score"] == 0.5

    def test_engagement_failure_is_neutral(self, clock):
        users = MagicMock()
        users.get_engagement_snapshot.return_value = None
        tasks = MagicMock()
        tasks.list_user_tasks.side_effect = RuntimeError("db down")
        builder = ContextBuilder(users, tasks, MagicMock(), clock)

        engagement = builder.engagement_for(MagicMock(id=1), "UTC", BASE_NOW)

        assert engagement.engagement_score == 0.5
        assert engagement.user_segment == "unknown"

    def test_settings_failure_uses_defaults(self, clock):
        users = MagicMock()
        users.get_settings.side_effect = RuntimeError("db down")
        builder = ContextBuilder(users, MagicMock(), MagicMock(), clock)
        assert builder.load_settings(1).window_start == "07:00"
