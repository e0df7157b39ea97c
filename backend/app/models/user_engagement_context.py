"""Cached engagement signals per user. Derived data: safe to drop and recompute at any time."""
from sqlalchemy import Column, ForeignKey, Integer

from app.db.base import Base
from app.db.types import JSONBType, UTCDateTime


class UserEngagementContext(Base):
    __tablename__ = "user_engagement_context"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    snapshot = Column(JSONBType, nullable=False, default=dict)
    computed_at = Column(UTCDateTime, nullable=False)
