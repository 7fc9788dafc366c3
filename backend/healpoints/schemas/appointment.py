# healpoints/schemas/appointment.py
from __future__ import annotations

from datetime import date as Date, datetime, time as Time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from healpoints.config.constants import AppointmentStatus
from healpoints.schemas.shared import UserBrief
from healpoints.schemas.slot import SlotOut


class AppointmentCreate(BaseModel):
    doctor_id: int
    slot_id: int
    notes: Optional[str] = Field(None, max_length=2000)


class StatusUpdate(BaseModel):
    """Body of PUT /{id}/status."""
    status: AppointmentStatus
    doctor_comment: Optional[str] = None
    cancel_reason: Optional[str] = None


class CommentUpdate(BaseModel):
    doctor_comment: str = Field(..., min_length=1)


class CancelRequest(BaseModel):
    cancel_reason: Optional[str] = None


class AdminAppointmentUpdate(BaseModel):
    date: Optional[Date] = None
    start_time: Optional[Time] = None
    end_time: Optional[Time] = None
    status: Optional[AppointmentStatus] = None
    cancel_reason: Optional[str] = None


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    patient_id: int
    slot_id: Optional[int] = None
    status: AppointmentStatus
    notes: Optional[str] = None
    doctor_comment: Optional[str] = None
    cancel_reason: Optional[str] = None
    canceled_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    slot: Optional[SlotOut] = None
    doctor: Optional[UserBrief] = None
    patient: Optional[UserBrief] = None


class AppointmentResponse(BaseModel):
    success: bool = True
    message: str
    appointment: AppointmentOut


class AppointmentListResponse(BaseModel):
    success: bool = True
    appointments: List[AppointmentOut] = Field(default_factory=list)
