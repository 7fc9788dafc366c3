# healpoints/schemas/rating.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from healpoints.config.constants import MAX_RATING, MIN_RATING
from healpoints.schemas.shared import UserBrief


class RatingIn(BaseModel):
    # half-star steps are checked by the ledger so the API answers with its message
    rating: float = Field(..., ge=MIN_RATING, le=MAX_RATING)
    feedback: Optional[str] = Field(None, max_length=2000)


class RatingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    patient_id: int
    rating: float
    feedback: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    patient: Optional[UserBrief] = None


class CanRateResponse(BaseModel):
    success: bool = True
    can_rate: bool
    has_rated: bool
    completed_appointments: int


class RatingResponse(BaseModel):
    success: bool = True
    message: str
    rating: RatingOut


class DoctorRatingsResponse(BaseModel):
    success: bool = True
    ratings: List[RatingOut] = Field(default_factory=list)
    average_rating: float = 0.0
    rating_count: int = 0
