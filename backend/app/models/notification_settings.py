"""Per-user notification settings. Created lazily with defaults on first access.

quiet_hours_start / quiet_hours_end: HH:MM in `timezone`; the daily range in which delivery is
allowed. start > end means the range wraps midnight (e.g. 21:00-08:00).
max_per_day: 0 disables notifications for the user entirely.
"""
from sqlalchemy import Column, ForeignKey, Integer, String

from app.db.base import Base
from app.db.types import JSONBType, UTCDateTime


class NotificationSettings(Base):
    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    personality = Column(String(16), nullable=False, default="casual")
    quiet_hours_start = Column(String(5), nullable=False, default="07:00")
    quiet_hours_end = Column(String(5), nullable=False, default="22:00")
    max_per_day = Column(Integer, nullable=False, default=5)
    enabled_types = Column(JSONBType, nullable=False, default=list)
    timezone = Column(String(64), nullable=False, default="America/Sao_Paulo")
    updated_at = Column(UTCDateTime, nullable=True)
