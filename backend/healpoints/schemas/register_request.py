# healpoints/schemas/register_request.py
from pydantic import BaseModel, EmailStr, model_validator, Field
from typing    import Optional, Annotated

from healpoints.schemas.shared import PatientIn, DoctorIn


class RegisterRequest(BaseModel):
    email:    EmailStr
    password: Annotated[str, Field(min_length=8, max_length=72)]
    name:     Annotated[str, Field(min_length=1, max_length=120)]
    phone:    Optional[str] = None

    # exactly one of these ↓ must be supplied; the role follows from it
    patient_profile: Optional[PatientIn] = None
    doctor_profile : Optional[DoctorIn]  = None

    @model_validator(mode="after")
    def _exactly_one_profile(self):
        if (self.patient_profile is None) == (self.doctor_profile is None):
            # either both None  OR  both not None  → invalid
            raise ValueError(
                "Provide either patient_profile or doctor_profile (not both)"
            )
        return self


class AdminCreateRequest(BaseModel):
    email:    EmailStr
    password: Annotated[str, Field(min_length=8, max_length=72)]
    name:     Annotated[str, Field(min_length=1, max_length=120)]
    phone:    Optional[str] = None
