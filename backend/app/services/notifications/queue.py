"""
Notification queue: enqueue (context -> priority -> delivery time -> guards -> content -> persist)
and process_queue (due PENDING rows -> window re-check -> deliver or reschedule -> status).

process_queue is guarded by a process-local lock: a call that finds it held returns [] at once.
This is enough for one scheduler process only; several workers draining the same table need an
external lease.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.errors import DeliveryError
from app.core.notify_config import NotifyConfig, get_notify_config
from app.models.notification import Notification
from app.models.task import Task
from app.services.notifications.content import ContentGenerator
from app.services.notifications.context import ContextBuilder
from app.services.notifications.guards import DuplicateGuard, RateLimiter
from app.services.notifications.priority import PriorityCalculator, get_priority_calculator
from app.services.notifications.stores import DeliveryTransport, NotificationStore, TaskStore, UserStore
from app.services.notifications.time_window import TimeWindow, clamp_to_window, next_window_start, to_local
from app.services.notifications.types import (
    EnqueueRequest,
    NotificationMetadata,
    NotificationStatus,
    NotificationType,
    TaskEvent,
)

logger = logging.getLogger(__name__)

# One drain at a time per process
_queue_busy = threading.Lock()

# (max hours until deadline, hours before the deadline to remind)
REMINDER_LEAD_HOURS: tuple[tuple[float, float], ...] = (
    (4, 1),
    (24, 3),
    (72, 24),
)
REMINDER_LEAD_HOURS_DEFAULT = 48


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reminder_delay_minutes(due_at: datetime | None, now: datetime) -> float | None:
    """
    Minutes from now until the reminder for a task due at due_at. None when there is no
    deadline or it has already passed; 0 when the ideal reminder instant is already behind us.
    """
    if due_at is None:
        return None
    hours = (due_at - now).total_seconds() / 3600
    if hours <= 0:
        return None
    lead = REMINDER_LEAD_HOURS_DEFAULT
    for max_hours, lead_hours in REMINDER_LEAD_HOURS:
        if hours <= max_hours:
            lead = lead_hours
            break
    remind_at = due_at - timedelta(hours=lead)
    return max(0.0, (remind_at - now).total_seconds() / 60)


def retry_backoff_seconds(retry_count: int, config: NotifyConfig) -> int:
    """Wait before the next attempt after retry_count failures: base * 2^(n-1), capped."""
    if retry_count <= 0:
        return 0
    return min(config.retry_backoff_seconds * (2 ** (retry_count - 1)), config.retry_backoff_max_seconds)


class QueueManager:
    def __init__(
        self,
        users: UserStore,
        tasks: TaskStore,
        notifications: NotificationStore,
        transport: DeliveryTransport,
        content: ContentGenerator | None = None,
        priority: PriorityCalculator | None = None,
        config: NotifyConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        guard: threading.Lock | None = None,
    ):
        self.users = users
        self.tasks = tasks
        self.notifications = notifications
        self.transport = transport
        self.content = content or ContentGenerator()
        self.priority = priority or PriorityCalculator()
        self.config = config or get_notify_config()
        self._clock = clock
        self._guard = guard or _queue_busy
        self.context_builder = ContextBuilder(
            users, tasks, notifications, clock, engagement_cache_minutes=self.config.engagement_cache_minutes
        )
        self.duplicates = DuplicateGuard(notifications, self.config.duplicate_cooldown_minutes, clock)
        self.rate_limiter = RateLimiter(users, notifications, clock)

    @property
    def is_processing(self) -> bool:
        return self._guard.locked()

    def now(self) -> datetime:
        return self._clock()

    # -------------------------
    # Enqueue
    # -------------------------

    async def enqueue(self, request: EnqueueRequest) -> Notification | None:
        """
        Create a PENDING notification, or return None when it is suppressed (rate limit,
        duplicate, missing task). UserNotFoundError and storage write errors propagate.
        """
        context = self.context_builder.build(request)
        if context is None:
            return None

        priority = self.priority.calculate(context)
        priority = self.priority.adjust_for_engagement(priority, context.user.engagement.engagement_score)
        priority = self.priority.dampen_for_queue_pressure(
            self._pending_for_user(request.user_id), request.user_id, request.type, priority
        )

        scheduled_at = self._target_delivery(context.now, request.delay_minutes, context.settings)

        if not self.rate_limiter.can_send(request.user_id):
            logger.info("Rate limit reached for user %s; dropping %s", request.user_id, request.type.value)
            return None
        if self.duplicates.is_duplicate(request):
            logger.info(
                "Duplicate %s for user %s task %s within cooldown; dropping",
                request.type.value,
                request.user_id,
                request.task_id,
            )
            return None

        generated = await self.content.generate(context)
        metadata = NotificationMetadata(
            tone=generated.tone,
            emoji=generated.emoji,
            objective=context.objective,
            generated_with_ai=generated.generated_with_ai,
            context_snapshot=context.to_snapshot(),
        )
        notification = self.notifications.create(
            {
                "user_id": request.user_id,
                "task_id": request.task_id,
                "type": request.type,
                "title": generated.title,
                "message": generated.message,
                "priority": priority,
                "scheduled_at": scheduled_at,
                "created_at": context.now,
                "metadata": metadata.model_dump(mode="json"),
            }
        )
        logger.info(
            "Queued %s notification %s for user %s (priority=%s scheduled_at=%s)",
            request.type.value,
            notification.id,
            request.user_id,
            priority,
            scheduled_at.isoformat(),
        )
        return notification

    def _pending_for_user(self, user_id: int) -> list[Notification]:
        try:
            return self.notifications.list_by_user(user_id, status=NotificationStatus.PENDING)
        except Exception:
            logger.warning("Pending lookup failed for user %s; skipping pressure check", user_id, exc_info=True)
            return []

    def _target_delivery(self, now: datetime, delay_minutes: float, settings) -> datetime:
        target = now + timedelta(minutes=delay_minutes or 0)
        try:
            window = TimeWindow.parse(settings.window_start, settings.window_end)
        except ValueError:
            logger.warning("Unparseable window %s-%s; scheduling without clamp", settings.window_start, settings.window_end)
            return target.astimezone(timezone.utc)
        return clamp_to_window(target, window, settings.timezone)

    # -------------------------
    # Drain
    # -------------------------

    async def process_queue(self) -> list[Notification]:
        """Deliver due notifications, highest priority first. Returns the ones moved to SENT."""
        if not self._guard.acquire(blocking=False):
            logger.info("Queue drain already running; skipping")
            return []
        try:
            now = self._clock()
            batch = self.notifications.list_pending(self.config.batch_size, now)
            if not batch:
                return []
            delivered: list[Notification] = []
            for item in batch:
                item_id = item.id
                try:
                    sent = await self._process_item(item, now)
                except Exception as e:
                    logger.exception("Failed to process notification %s", item_id)
                    self.rollback()
                    self._defer_after_error(item_id, e, now)
                    continue
                if sent is not None:
                    delivered.append(sent)
            logger.info("Queue drain: %s due, %s delivered", len(batch), len(delivered))
            return delivered
        finally:
            self._guard.release()

    async def _process_item(self, item: Notification, now: datetime) -> Notification | None:
        settings = self.context_builder.load_settings(item.user_id)
        metadata = NotificationMetadata.from_row(item.payload)

        try:
            window = TimeWindow.parse(settings.window_start, settings.window_end)
        except ValueError:
            logger.warning("Unparseable window for user %s; delivering anyway", item.user_id)
            window = None
        if window is not None:
            local_now = to_local(now, settings.timezone)
            if not window.contains(local_now):
                next_start = next_window_start(local_now, window).astimezone(timezone.utc)
                metadata.reschedule_count += 1
                self.notifications.update_status(
                    item.id,
                    NotificationStatus.PENDING,
                    {"scheduled_at": next_start, "metadata": metadata},
                    now=now,
                )
                logger.info(
                    "Notification %s outside window %s for user %s; rescheduled to %s",
                    item.id,
                    window,
                    item.user_id,
                    next_start.isoformat(),
                )
                return None

        try:
            result = await self.transport.send(item.user_id, self._payload(item))
            if result.attempted and not result.delivered:
                raise DeliveryError(f"All {result.attempted} device(s) rejected notification {item.id}")
        except Exception as e:
            self._record_failure(item, metadata, e, now)
            return None

        metadata.delivery = result.to_dict()
        metadata.last_error = None
        return self.notifications.update_status(item.id, NotificationStatus.SENT, {"metadata": metadata}, now=now)

    def _record_failure(self, item: Notification, metadata: NotificationMetadata, error: Exception, now: datetime) -> None:
        metadata.retry_count += 1
        metadata.last_error = str(error)[:500]
        if metadata.retry_count > self.config.max_attempts:
            self.notifications.update_status(item.id, NotificationStatus.FAILED, {"metadata": metadata}, now=now)
            logger.warning(
                "Notification %s failed after %s attempts: %s", item.id, metadata.retry_count, error
            )
            return
        retry_at = now + timedelta(seconds=retry_backoff_seconds(metadata.retry_count, self.config))
        self.notifications.update_status(
            item.id,
            NotificationStatus.PENDING,
            {"scheduled_at": retry_at, "metadata": metadata},
            now=now,
        )
        logger.warning(
            "Delivery failed for notification %s (attempt %s/%s), retry at %s: %s",
            item.id,
            metadata.retry_count,
            self.config.max_attempts,
            retry_at.isoformat(),
            error,
        )

    def _defer_after_error(self, item_id: int, error: Exception, now: datetime) -> None:
        """Retry bookkeeping for an item that failed outside delivery, so it backs off like a failed send."""
        try:
            row = self.notifications.get(item_id)
            if row is None or row.status != NotificationStatus.PENDING.value:
                return
            self._record_failure(row, NotificationMetadata.from_row(row.payload), error, now)
        except Exception:
            logger.warning("Could not record failure for notification %s", item_id, exc_info=True)
            self.rollback()

    def rollback(self) -> None:
        self.notifications.rollback()

    @staticmethod
    def _payload(item: Notification) -> dict[str, Any]:
        return {
            "notification_id": item.id,
            "title": item.title,
            "message": item.message,
            "type": item.type,
            "task_id": item.task_id,
            "priority": item.priority,
        }

    # -------------------------
    # Task events
    # -------------------------

    def requests_for_event(self, task: Task | None, user_id: int, event: TaskEvent) -> list[EnqueueRequest]:
        task_id = task.id if task is not None else None
        if event == TaskEvent.TASK_CREATED:
            requests = [
                EnqueueRequest(
                    user_id=user_id,
                    task_id=task_id,
                    type=NotificationType.MOTIVATION,
                    objective="Encourage the user to start the new task",
                )
            ]
            delay = reminder_delay_minutes(task.due_at if task is not None else None, self._clock())
            if delay is not None:
                requests.append(
                    EnqueueRequest(
                        user_id=user_id,
                        task_id=task_id,
                        type=NotificationType.REMINDER,
                        objective="Remind the user before the deadline",
                        delay_minutes=delay,
                    )
                )
            return requests
        if event == TaskEvent.TASK_DEADLINE_APPROACHING:
            return [
                EnqueueRequest(
                    user_id=user_id,
                    task_id=task_id,
                    type=NotificationType.ALERT,
                    objective="Warn that the deadline is close",
                )
            ]
        if event == TaskEvent.TASK_OVERDUE:
            return [
                EnqueueRequest(
                    user_id=user_id,
                    task_id=task_id,
                    type=NotificationType.ALERT,
                    objective="Tell the user the task is overdue and suggest finishing it",
                )
            ]
        if event == TaskEvent.TASK_COMPLETED:
            return [
                EnqueueRequest(
                    user_id=user_id,
                    task_id=task_id,
                    type=NotificationType.ACHIEVEMENT,
                    objective="Celebrate the completed task",
                )
            ]
        raise ValueError(f"Unsupported task event {event!r}")

    async def schedule_task_notifications(
        self, task_id: int, user_id: int, event: TaskEvent | str
    ) -> list[Notification]:
        """Enqueue the notifications a task event calls for. Suppressed ones are left out."""
        event = TaskEvent(event)
        task = self.tasks.get_task(task_id)
        created: list[Notification] = []
        for request in self.requests_for_event(task, user_id, event):
            notification = await self.enqueue(request)
            if notification is not None:
                created.append(notification)
        logger.info(
            "Task %s %s: %s notification(s) queued for user %s", task_id, event.value, len(created), user_id
        )
        return created


def build_queue_manager(db, transport: DeliveryTransport | None = None, content: ContentGenerator | None = None, **kwargs) -> QueueManager:
    """QueueManager over SQL stores for one session, with the APNs transport and configured AI backend."""
    from app.agents.notification_agent import default_content_backend
    from app.config import settings
    from app.services.notifications.sql_stores import SqlNotificationStore, SqlTaskStore, SqlUserStore
    from app.services.push import ApnsTransport

    if content is None:
        content = ContentGenerator(
            default_content_backend(),
            timeout_seconds=settings.content_timeout_seconds,
            max_attempts=settings.content_max_attempts,
            backoff_seconds=settings.content_backoff_seconds,
        )
    kwargs.setdefault("priority", get_priority_calculator())
    return QueueManager(
        users=SqlUserStore(db),
        tasks=SqlTaskStore(db),
        notifications=SqlNotificationStore(db),
        transport=transport or ApnsTransport(db),
        content=content,
        **kwargs,
    )
