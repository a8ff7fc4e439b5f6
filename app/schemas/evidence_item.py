# app/schemas/evidence_item.py
from pydantic import BaseModel, Field
from datetime import datetime
from app.models.enums import Phase


class EvidenceItemIn(BaseModel):
    reference: str
    content_type: str
    size_bytes: int
    captured_by: str


class EvidenceBatchRequest(BaseModel):
    reservation_id: str
    phase: Phase
    items: list[EvidenceItemIn] = Field(default_factory=list)


class EvidenceItemOut(BaseModel):
    id: str
    reservation_id: str
    phase: Phase
    reference: str
    content_type: str
    size_bytes: int
    captured_by: str
    uploaded_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class EvidenceBatchOut(BaseModel):
    reservation_id: str
    phase: Phase
    count: int
    items: list[EvidenceItemOut]
