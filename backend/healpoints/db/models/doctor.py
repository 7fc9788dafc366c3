# healpoints/db/models/doctor.py
from sqlalchemy import Column, Integer, String, Text, Float, ForeignKey
from sqlalchemy.orm import relationship
from healpoints.db.base import Base

class DoctorModel(Base):
    __tablename__ = "doctors"

    user_id        = Column(Integer,
                            ForeignKey("users.id", ondelete="CASCADE"),
                            primary_key=True)

    specialization = Column(String(100), nullable=False)
    clinic_name    = Column(String(120), nullable=True)
    clinic_address = Column(String(255), nullable=True)
    about          = Column(Text,        nullable=True)

    # Running aggregate, recomputed by the rating ledger on every change
    average_rating = Column(Float,   nullable=False, default=0.0, server_default="0")
    rating_count   = Column(Integer, nullable=False, default=0,   server_default="0")

    user = relationship("UserModel", back_populates="doctor_profile")
