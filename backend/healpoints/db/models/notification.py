# healpoints/db/models/notification.py
from sqlalchemy import Boolean, Column, Integer, String, DateTime, Text, ForeignKey, Index
from sqlalchemy.sql import func
from healpoints.db.base import Base


class NotificationModel(Base):
    __tablename__ = "notifications"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False)  # appointment, rating, system
    # appointment id, doctor id, ... depending on type
    target_id = Column(Integer, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("ix_notifications_user_read", "user_id", "is_read"),)
