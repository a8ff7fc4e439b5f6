# app/dependencies.py
"""
FastAPI dependencies that build the check-in services for one request.
Each request gets its own service objects bound to its own DB session; nothing
is shared between requests except settings.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.services.credential_issuer import CredentialIssuer
from app.services.credential_validator import CredentialValidator
from app.services.evidence_gate import EvidenceGate
from app.services.occupancy_service import OccupancyStateMachine
from app.utils.clock import utcnow


def get_clock():
    """Override in tests to pin the current time."""
    return utcnow


def get_issuer(db: Session = Depends(get_db), clock=Depends(get_clock)) -> CredentialIssuer:
    return CredentialIssuer(db, secret=settings.CREDENTIAL_SECRET, clock=clock)


def get_validator(db: Session = Depends(get_db), clock=Depends(get_clock)) -> CredentialValidator:
    return CredentialValidator(db, secret=settings.CREDENTIAL_SECRET, clock=clock)


def get_evidence_gate(db: Session = Depends(get_db), clock=Depends(get_clock)) -> EvidenceGate:
    return EvidenceGate(db, clock=clock)


def get_state_machine(
    db: Session = Depends(get_db),
    validator: CredentialValidator = Depends(get_validator),
    gate: EvidenceGate = Depends(get_evidence_gate),
    clock=Depends(get_clock),
) -> OccupancyStateMachine:
    return OccupancyStateMachine(db, validator, gate, clock=clock)
