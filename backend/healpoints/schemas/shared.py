# healpoints/schemas/shared.py
from datetime import datetime, date
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, EmailStr

from healpoints.config.constants import Role

class Sex(str, Enum):
    m = "M"
    f = "F"

class BloodType(str, Enum):
    a_pos = "A+"
    a_neg = "A-"
    b_pos = "B+"
    b_neg = "B-"
    ab_pos = "AB+"
    ab_neg = "AB-"
    o_pos = "O+"
    o_neg = "O-"

class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    dob: Optional[date] = None
    sex: Optional[Sex] = None
    address: Optional[str] = None
    blood_type: Optional[BloodType] = None

class DoctorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    specialization: str
    clinic_name: Optional[str] = None
    clinic_address: Optional[str] = None
    about: Optional[str] = None
    average_rating: float = 0.0
    rating_count: int = 0

class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    name: str
    phone: Optional[str] = None
    role: Role
    patient_profile: Optional[PatientOut] = None
    doctor_profile: Optional[DoctorOut] = None
    created_at: Optional[datetime] = None

class UserBrief(BaseModel):
    """Name card embedded in appointment and rating payloads."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: EmailStr


class PatientIn(PatientOut):        # inherits dob … blood_type …
    model_config = ConfigDict(use_enum_values=True)

class DoctorIn(BaseModel):
    specialization: str
    clinic_name: Optional[str] = None
    clinic_address: Optional[str] = None
    about: Optional[str] = None
