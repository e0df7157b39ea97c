from app.models.notification import Notification
from app.models.notification_feedback import NotificationFeedback
from app.models.notification_settings import NotificationSettings
from app.models.push_token import PushToken
from app.models.task import Task
from app.models.user import User
from app.models.user_engagement_context import UserEngagementContext

__all__ = [
    "Notification",
    "NotificationFeedback",
    "NotificationSettings",
    "PushToken",
    "Task",
    "User",
    "UserEngagementContext",
]
