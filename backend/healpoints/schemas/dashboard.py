# healpoints/schemas/dashboard.py
from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field

from healpoints.schemas.appointment import AppointmentOut
from healpoints.schemas.shared import UserOut


class DoctorStats(BaseModel):
    total_appointments: int = 0
    today_appointments: int = 0
    total_patients: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    average_rating: float = 0.0
    rating_count: int = 0


class DoctorDashboardResponse(BaseModel):
    success: bool = True
    stats: DoctorStats
    recent_appointments: List[AppointmentOut] = Field(default_factory=list)
    today_schedule: List[AppointmentOut] = Field(default_factory=list)


class AdminStats(BaseModel):
    users_by_role: Dict[str, int] = Field(default_factory=dict)
    total_users: int = 0
    appointments_by_status: Dict[str, int] = Field(default_factory=dict)
    total_appointments: int = 0
    total_slots: int = 0
    available_slots: int = 0
    total_ratings: int = 0


class AdminDashboardResponse(BaseModel):
    success: bool = True
    stats: AdminStats
    recent_appointments: List[AppointmentOut] = Field(default_factory=list)


class UserListResponse(BaseModel):
    success: bool = True
    users: List[UserOut] = Field(default_factory=list)
