"""
Notifications API: inbox, enqueue, read / dismiss / feedback, settings, stats, task events,
queue drain and scheduler status.

User identified by the X-User-Id header. Domain errors map to HTTP via notification_error_to_http.
"""
import logging
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.errors import NotificationError, notification_error_to_http
from app.db.session import get_db
from app.services.notification_service import NotificationService, notification_to_dict
from app.services.notifications.queue import QueueManager, build_queue_manager
from app.services.notifications.types import EnqueueRequest, NotificationStatus, NotificationType, TaskEvent

router = APIRouter()
logger = logging.getLogger(__name__)


def _user_id(x_user_id: int = Header(..., alias="X-User-Id", ge=1)) -> int:
    return x_user_id


def get_queue_manager(db: Session = Depends(get_db)) -> QueueManager:
    return build_queue_manager(db)


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    return NotificationService(db)


# --- Inbox ---


@router.get("/notifications")
def list_notifications(
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
    status: NotificationStatus | None = Query(None),
    type: NotificationType | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
) -> dict[str, Any]:
    """Notifications for the user, newest first. Filter by status and/or type."""
    rows = service.list_notifications(user_id, status=status, type=type, limit=limit)
    return {"notifications": rows, "count": len(rows)}


class EnqueueBody(BaseModel):
    type: NotificationType
    task_id: int | None = None
    objective: str | None = Field(None, max_length=500)
    delay_minutes: float = Field(0, ge=0, le=60 * 24 * 30)


@router.post("/notifications")
async def enqueue_notification(
    body: EnqueueBody,
    user_id: int = Depends(_user_id),
    manager: QueueManager = Depends(get_queue_manager),
) -> dict[str, Any]:
    """
    Queue one notification. queued=false means it was suppressed (daily limit, duplicate
    within cooldown, or unknown task); that is not an error.
    """
    request = EnqueueRequest(user_id=user_id, **body.model_dump())
    try:
        row = await manager.enqueue(request)
    except NotificationError as e:
        raise notification_error_to_http(e) from e
    if row is None:
        return {"queued": False, "notification": None}
    return {"queued": True, "notification": notification_to_dict(row)}


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    try:
        return service.mark_read(user_id, notification_id)
    except NotificationError as e:
        raise notification_error_to_http(e) from e


@router.post("/notifications/{notification_id}/dismiss")
def dismiss_notification(
    notification_id: int,
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    try:
        return service.dismiss(user_id, notification_id)
    except NotificationError as e:
        raise notification_error_to_http(e) from e


class FeedbackBody(BaseModel):
    feedback_type: str = Field(..., description="helpful, annoying, irrelevant, perfect, too_early, too_late")
    comment: str | None = Field(None, max_length=1000)


@router.post("/notifications/{notification_id}/feedback")
def record_feedback(
    notification_id: int,
    body: FeedbackBody,
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    try:
        return service.record_feedback(user_id, notification_id, body.feedback_type, body.comment)
    except NotificationError as e:
        raise notification_error_to_http(e) from e


# --- Settings & stats ---


@router.get("/settings")
def get_settings(
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    try:
        return service.get_settings(user_id)
    except NotificationError as e:
        raise notification_error_to_http(e) from e


class SettingsBody(BaseModel):
    personality: str | None = None
    quiet_hours_start: str | None = None
    quiet_hours_end: str | None = None
    max_per_day: int | None = None
    enabled_types: list[str] | None = None
    timezone: str | None = None


@router.put("/settings")
def update_settings(
    body: SettingsBody,
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
) -> dict[str, Any]:
    """Partial update: only fields present in the body change."""
    try:
        return service.update_settings(user_id, body.model_dump(exclude_unset=True))
    except NotificationError as e:
        raise notification_error_to_http(e) from e


@router.get("/stats")
def get_stats(
    user_id: int = Depends(_user_id),
    service: NotificationService = Depends(get_notification_service),
    days: int = Query(30, ge=1, le=365),
) -> dict[str, Any]:
    return service.get_stats(user_id, days=days)


# --- Task events, queue, scheduler ---


class TaskEventBody(BaseModel):
    event: TaskEvent


@router.post("/tasks/{task_id}/events")
async def task_event(
    task_id: int,
    body: TaskEventBody,
    user_id: int = Depends(_user_id),
    manager: QueueManager = Depends(get_queue_manager),
) -> dict[str, Any]:
    """Called by the task system on create / deadline / overdue / complete."""
    try:
        rows = await manager.schedule_task_notifications(task_id, user_id, body.event)
    except NotificationError as e:
        raise notification_error_to_http(e) from e
    return {"event": body.event.value, "notifications": [notification_to_dict(n) for n in rows]}


@router.post("/queue/process")
async def process_queue(manager: QueueManager = Depends(get_queue_manager)) -> dict[str, Any]:
    """Run one drain now (same as the scheduler tick). Returns [] if a drain is already running."""
    delivered = await manager.process_queue()
    return {"delivered": [n.id for n in delivered], "count": len(delivered)}


@router.get("/scheduler/status")
def scheduler_status(request: Request) -> dict[str, Any]:
    scheduler = getattr(request.app.state, "notification_scheduler", None)
    if scheduler is None:
        return {"running": False, "jobs": []}
    return scheduler.status()
