from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime

from wayfarer.models import TripStatus, TransitionReason


class TripCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    destination: Optional[str] = None
    start_date: datetime
    end_date: datetime
    user_id: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class TripResponse(BaseModel):
    id: int
    title: str
    destination: Optional[str]
    start_date: datetime
    end_date: datetime
    status: TripStatus
    user_id: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StatusUpdate(BaseModel):
    status: TripStatus
    reason: TransitionReason = TransitionReason.MANUAL
    user_id: Optional[str] = None

    @model_validator(mode="after")
    def check_reason(self):
        if self.reason not in (TransitionReason.MANUAL, TransitionReason.ADMIN_OVERRIDE):
            raise ValueError("reason must be 'manual' or 'admin_override'")
        return self


class ItineraryUpdate(BaseModel):
    days: list[dict] = []
    activities: list[dict] = []
    user_id: Optional[str] = None


class StatusInfo(BaseModel):
    label: str
    description: str


class TransitionResponse(BaseModel):
    old_status: Optional[TripStatus]
    new_status: TripStatus
    reason: str
    timestamp: datetime


class StatusHistoryEntry(BaseModel):
    id: int
    trip_id: int
    old_status: Optional[TripStatus]
    new_status: TripStatus
    reason: str
    user_id: Optional[str]
    metadata: dict
    timestamp: datetime
    is_automatic: bool
    is_manual: bool
    description: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int
