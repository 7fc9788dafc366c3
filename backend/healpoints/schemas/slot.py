# healpoints/schemas/slot.py
from __future__ import annotations

from datetime import date as Date, datetime, time as Time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SlotCreate(BaseModel):
    """Body of POST /add-slot. Dates are `YYYY-MM-DD`, times `HH:MM[:SS]`."""
    date: Date
    start_time: Time
    end_time: Time


class SlotUpdate(BaseModel):
    date: Optional[Date] = None
    start_time: Optional[Time] = None
    end_time: Optional[Time] = None

    @model_validator(mode="after")
    def _something_to_change(self):
        if self.date is None and self.start_time is None and self.end_time is None:
            raise ValueError("Provide at least one of date, start_time, end_time")
        return self


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    date: Date
    start_time: Time
    end_time: Time
    is_booked: bool
    created_at: Optional[datetime] = None


class SlotResponse(BaseModel):
    success: bool = True
    message: str
    slot: SlotOut


class SlotListResponse(BaseModel):
    success: bool = True
    slots: List[SlotOut] = Field(default_factory=list)
