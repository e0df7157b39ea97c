"""Device push token for a user; the APNs transport sends to every token the user has."""
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.sql import func

from app.db.base import Base
from app.db.types import UTCDateTime


class PushToken(Base):
    __tablename__ = "push_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    device_token = Column(String(256), nullable=False, unique=True, index=True)
    platform = Column(String(16), nullable=False, server_default="ios")
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
