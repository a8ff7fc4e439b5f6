# app/schemas/credential.py
from pydantic import BaseModel
from datetime import datetime
from typing import Optional
from app.models.enums import Phase


class CredentialIssueRequest(BaseModel):
    reservation_id: str
    subject_id: str
    phase: Phase
    linked_event_id: Optional[str] = None
    include_image: bool = False


class CredentialIssueOut(BaseModel):
    credential_id: str
    wire: str
    phase: Phase
    expires_at: datetime
    qr_image: Optional[str] = None     # PNG data URL when include_image=true


class CredentialValidateRequest(BaseModel):
    wire: str


class CredentialPayloadOut(BaseModel):
    credential_id: str
    reservation_id: str
    subject_id: str
    phase: Phase
    issued_at: datetime
    expires_at: datetime
