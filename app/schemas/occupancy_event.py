# app/schemas/occupancy_event.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from app.models.enums import OccupancyState, Phase


class ArriveRequest(BaseModel):
    reservation_id: str
    credential: str              # wire form scanned from the QR


class DepartRequest(BaseModel):
    reservation_id: str
    credential: Optional[str] = None
    subject_id: Optional[str] = None


class OccupancyEventOut(BaseModel):
    id: str
    reservation_id: str
    subject_id: str
    phase: Phase
    credential_id: Optional[str]
    occurred_at: datetime
    payment_captured: bool
    door_opened: bool

    class Config:
        from_attributes = True


class OccupancyStatusOut(BaseModel):
    reservation_id: str
    state: OccupancyState
    has_arrival: bool
    has_departure: bool
    arrival_at: Optional[datetime] = None
    departure_at: Optional[datetime] = None
