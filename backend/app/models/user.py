"""Task-app user. Owned by the task system; the notification core only reads it."""
from sqlalchemy import Column, Integer, String
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import UTCDateTime


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(128), nullable=False)
    email = Column(String(256), nullable=True, unique=True)
    level = Column(Integer, nullable=False, server_default="1", default=1)
    xp_points = Column(Integer, nullable=False, server_default="0", default=0)
    streak = Column(Integer, nullable=False, server_default="0", default=0)  # consecutive completion days
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
