"""User task: deadline, points and labels feed notification scoring and content.

category_names / tag_names: denormalized label lists (enrichment for prompts and scoring).
deadline_notified_at: set by the hourly deadline sweep so a task is only flagged once.
overdue: set by the daily overdue sweep.
"""
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text, false

from app.db.base import Base
from app.db.types import JSONBType, UTCDateTime


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    points = Column(Integer, nullable=False, server_default="1", default=1)  # 1..20
    due_at = Column(UTCDateTime, nullable=True, index=True)
    completed = Column(Boolean, nullable=False, server_default=false(), default=False)
    completed_at = Column(UTCDateTime, nullable=True)
    overdue = Column(Boolean, nullable=False, server_default=false(), default=False)
    deadline_notified_at = Column(UTCDateTime, nullable=True)
    category_names = Column(JSONBType, nullable=False, default=list)
    tag_names = Column(JSONBType, nullable=False, default=list)
    created_at = Column(UTCDateTime, nullable=False)
