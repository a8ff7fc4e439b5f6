# app/routers/credentials.py
"""
Credential endpoints.
POST /credentials          — issue an ARRIVAL or DEPARTURE credential (optionally with QR image).
POST /credentials/validate — pre-flight check of a scanned credential; does NOT redeem it.
"""

from fastapi import APIRouter, Depends, status

from app.schemas.credential import (
    CredentialIssueOut, CredentialIssueRequest, CredentialPayloadOut, CredentialValidateRequest,
)
from app.dependencies import get_issuer, get_validator
from app.services.credential_issuer import CredentialIssuer
from app.services.credential_validator import CredentialValidator
from app.services.qr_service import render_data_url

router = APIRouter()


@router.post("/credentials", response_model=CredentialIssueOut, status_code=status.HTTP_201_CREATED,
             summary="Issue a check-in / check-out credential")
def issue_credential(body: CredentialIssueRequest, issuer: CredentialIssuer = Depends(get_issuer)):
    issued = issuer.issue(body.reservation_id, body.subject_id, body.phase,
                          linked_event_id=body.linked_event_id)
    return CredentialIssueOut(
        credential_id=issued.credential_id,
        wire=issued.wire,
        phase=issued.payload.phase,
        expires_at=issued.expires_at,
        qr_image=render_data_url(issued.wire) if body.include_image else None,
    )


@router.post("/credentials/validate", response_model=CredentialPayloadOut,
             summary="Check a scanned credential without redeeming it")
def validate_credential(body: CredentialValidateRequest,
                        validator: CredentialValidator = Depends(get_validator)):
    checked = validator.inspect(body.wire)
    p = checked.payload
    return CredentialPayloadOut(
        credential_id=checked.credential_id,
        reservation_id=p.reservation_id,
        subject_id=p.subject_id,
        phase=p.phase,
        issued_at=p.issued_at,
        expires_at=p.expires_at,
    )
