# healpoints/db/models/patient.py
from sqlalchemy import Column, Integer, String, Date, ForeignKey
from sqlalchemy.orm import relationship
from healpoints.db.base import Base

class PatientModel(Base):
    __tablename__ = "patients"

    user_id    = Column(Integer,
                        ForeignKey("users.id", ondelete="CASCADE"),
                        primary_key=True)

    dob        = Column(Date,        nullable=True)
    sex        = Column(String(1))
    address    = Column(String(255))
    blood_type = Column(String(3))

    user = relationship("UserModel", back_populates="patient_profile")
