# healpoints/db/models/slot.py
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from healpoints.db.base import Base


class SlotModel(Base):
    __tablename__ = "slots"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Wall-clock values in the clinic timezone
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_booked = Column(Boolean, nullable=False, default=False, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_slots_start_before_end"),
        Index("ix_slots_doctor_date", "doctor_id", "date", "start_time"),
    )

    doctor = relationship("UserModel", foreign_keys=[doctor_id])

    def __repr__(self):
        return (
            f"<SlotModel(id={self.id}, doctor_id={self.doctor_id}, "
            f"{self.date} {self.start_time}-{self.end_time}, booked={self.is_booked})>"
        )
