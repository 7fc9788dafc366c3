# healpoints/db/models/rating.py
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from healpoints.db.base import Base


class RatingModel(Base):
    __tablename__ = "doctor_ratings"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rating = Column(Float, nullable=False)
    feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # A patient rates a given doctor at most once
    __table_args__ = (
        UniqueConstraint("doctor_id", "patient_id", name="uq_doctor_ratings_doctor_patient"),
        CheckConstraint("rating >= 0.5 AND rating <= 5", name="ck_doctor_ratings_range"),
    )

    patient = relationship("UserModel", foreign_keys=[patient_id])
