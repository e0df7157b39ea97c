"""User feedback on a delivered notification (helpful, annoying, too_early, ...)."""
from sqlalchemy import Column, ForeignKey, Integer, String, Text

from app.db.base import Base
from app.db.types import UTCDateTime


class NotificationFeedback(Base):
    __tablename__ = "notification_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    notification_id = Column(Integer, ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    feedback_type = Column(String(16), nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
