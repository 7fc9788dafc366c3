# healpoints/db/models/appointment.py
from sqlalchemy import (
    Column,
    Enum,
    Integer,
    DateTime,
    String,
    Text,
    ForeignKey,
    Index,
    text,
)
from sqlalchemy.orm import relationship
from healpoints.config.constants import AppointmentStatus
from healpoints.db.base import Base
from sqlalchemy.sql import func

# Only one Pending/Confirmed appointment may hold a slot
_ACTIVE_SLOT_CLAUSE = text("status IN ('Pending', 'Confirmed')")


class AppointmentModel(Base):
    __tablename__ = "appointments"
    __mapper_args__ = {"eager_defaults": True}

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # Nulled when the slot of a canceled appointment is later deleted
    slot_id = Column(Integer, ForeignKey("slots.id", ondelete="SET NULL"), nullable=True)
    status = Column(
        Enum(
            AppointmentStatus,
            name="appointment_status",
            native_enum=False,
            length=20,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    notes = Column(Text, nullable=True)
    doctor_comment = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    canceled_by = Column(String(20), nullable=True)  # role of the canceling actor
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "slot_id",
            unique=True,
            postgresql_where=_ACTIVE_SLOT_CLAUSE,
            sqlite_where=_ACTIVE_SLOT_CLAUSE,
        ),
        Index("ix_appointments_doctor_status", "doctor_id", "status"),
        Index("ix_appointments_patient_id", "patient_id"),
    )

    # Relationships
    patient = relationship("UserModel", foreign_keys=[patient_id])
    doctor = relationship("UserModel", foreign_keys=[doctor_id])
    slot = relationship("SlotModel")

    def __repr__(self):
        return f"<AppointmentModel(id={self.id}, slot_id={self.slot_id}, status={self.status})>"
