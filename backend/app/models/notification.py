"""Notification: one queued / delivered message for a user.

status: PENDING -> SENT -> READ, or PENDING -> DISMISSED / FAILED (see NotificationStatus).
scheduled_at: earliest legal delivery instant (UTC); the queue drains rows with scheduled_at <= now.
sent_at / read_at: set once, on the SENT / READ transition.
metadata: tone, emoji, retry bookkeeping, context snapshot (validated by NotificationMetadata).
"""
from sqlalchemy import Column, ForeignKey, Index, Integer, String

from app.db.base import Base
from app.db.types import JSONBType, UTCDateTime


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_status_scheduled", "status", "scheduled_at"),
        Index("ix_notifications_user_type_created", "user_id", "type", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True, index=True)
    type = Column(String(16), nullable=False)
    title = Column(String(60), nullable=False)
    message = Column(String(280), nullable=False)
    priority = Column(Integer, nullable=False, default=5)
    scheduled_at = Column(UTCDateTime, nullable=False)
    status = Column(String(16), nullable=False, default="PENDING", index=True)
    sent_at = Column(UTCDateTime, nullable=True)
    read_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=True)
    payload = Column("metadata", JSONBType, nullable=False, default=dict)  # column name 'metadata' in DB
