"""
Maintenance sweeps run by NotificationScheduler. Each returns a count and isolates failures
per task / user so one bad row does not stop the rest.
"""
import logging
from datetime import timedelta

from app.services.notifications.queue import QueueManager
from app.services.notifications.types import EnqueueRequest, NotificationStatus, NotificationType, TaskEvent

logger = logging.getLogger(__name__)

RETENTION_STATUSES = [NotificationStatus.READ, NotificationStatus.DISMISSED, NotificationStatus.FAILED]


async def run_deadline_sweep(manager: QueueManager) -> int:
    """Tasks due within the sweep window and not yet flagged: one TASK_DEADLINE_APPROACHING each."""
    now = manager.now()
    tasks = manager.tasks.list_due_within(now, manager.config.deadline_window_hours)
    created = 0
    for task_id, user_id in [(t.id, t.user_id) for t in tasks]:
        try:
            created += len(
                await manager.schedule_task_notifications(task_id, user_id, TaskEvent.TASK_DEADLINE_APPROACHING)
            )
            manager.tasks.mark_deadline_notified(task_id, now)
        except Exception:
            logger.exception("Deadline sweep failed for task %s", task_id)
            manager.rollback()
    logger.info("Deadline sweep: %s task(s) due soon, %s notification(s) queued", len(tasks), created)
    return created


async def run_overdue_sweep(manager: QueueManager) -> int:
    """Incomplete tasks past their deadline: mark overdue, then TASK_OVERDUE."""
    now = manager.now()
    tasks = manager.tasks.list_overdue(now)
    created = 0
    for task_id, user_id in [(t.id, t.user_id) for t in tasks]:
        try:
            manager.tasks.mark_overdue(task_id)
            created += len(await manager.schedule_task_notifications(task_id, user_id, TaskEvent.TASK_OVERDUE))
        except Exception:
            logger.exception("Overdue sweep failed for task %s", task_id)
            manager.rollback()
    logger.info("Overdue sweep: %s task(s) overdue, %s notification(s) queued", len(tasks), created)
    return created


def run_retention_cleanup(manager: QueueManager) -> int:
    deleted = manager.notifications.delete_older_than(
        manager.config.retention_days, RETENTION_STATUSES, manager.now()
    )
    logger.info("Retention cleanup: deleted %s notification(s) older than %s days", deleted, manager.config.retention_days)
    return deleted


async def run_weekly_insights(manager: QueueManager) -> int:
    """One INSIGHT per user active in the last INSIGHT_ACTIVITY_DAYS."""
    since = manager.now() - timedelta(days=manager.config.insight_activity_days)
    user_ids = manager.users.list_recently_active(since)
    created = 0
    for user_id in user_ids:
        try:
            notification = await manager.enqueue(
                EnqueueRequest(
                    user_id=user_id,
                    type=NotificationType.INSIGHT,
                    objective="Share a weekly insight about the user's productivity patterns",
                )
            )
        except Exception:
            logger.exception("Weekly insight failed for user %s", user_id)
            manager.rollback()
            continue
        if notification is not None:
            created += 1
    logger.info("Weekly insights: %s active user(s), %s insight(s) queued", len(user_ids), created)
    return created
