# healpoints/schemas/user.py
from __future__ import annotations

from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from healpoints.schemas.shared import BloodType, Sex, UserOut


class ProfileUpdate(BaseModel):
    """
    Body of PUT /api/user/update-profile.

    Only fields that are sent are changed; doctor fields are ignored for a
    patient and the other way round. `target_user_id` is for admins.
    """
    model_config = ConfigDict(use_enum_values=True)

    target_user_id: Optional[int] = None
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    phone: Optional[str] = None
    # doctor
    specialization: Optional[str] = Field(None, min_length=1, max_length=100)
    clinic_name: Optional[str] = None
    clinic_address: Optional[str] = None
    about: Optional[str] = None
    # patient
    dob: Optional[date] = None
    sex: Optional[Sex] = None
    address: Optional[str] = None
    blood_type: Optional[BloodType] = None


class UserResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None
    user: UserOut


class UserCountResponse(BaseModel):
    success: bool = True
    count: int
