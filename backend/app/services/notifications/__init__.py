"""
Notification core: priority scoring, delivery windows, duplicate / rate-limit guards,
content generation and the delivery queue.

- enqueue: context -> priority -> scheduled_at (clamped into the user's window) -> guards -> content -> PENDING row.
- process_queue: due PENDING rows -> window re-check -> deliver (SENT) / reschedule / retry -> FAILED after max attempts.
"""
from app.services.notifications.queue import QueueManager, build_queue_manager
from app.services.notifications.types import (
    EnqueueRequest,
    NotificationMetadata,
    NotificationStatus,
    NotificationType,
    TaskEvent,
)

__all__ = [
    "EnqueueRequest",
    "NotificationMetadata",
    "NotificationStatus",
    "NotificationType",
    "QueueManager",
    "TaskEvent",
    "build_queue_manager",
]
