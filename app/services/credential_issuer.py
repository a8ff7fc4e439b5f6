# app/services/credential_issuer.py
"""
Credential issuance — creates the QR credential for one reservation + phase.

TTL policy: ARRIVAL credentials live ARRIVAL_TTL_HOURS (48h), DEPARTURE credentials
DEPARTURE_TTL_HOURS (24h), both counted from issuance. A DEPARTURE credential may
record the arrival event it follows (linked_event_id), for audit only.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import IssuanceError
from app.models.credential import Credential
from app.models.enums import Phase
from app.services import token_codec
from app.services.token_codec import CredentialPayload
from app.utils.clock import utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


def default_ttls() -> dict:
    return {
        Phase.ARRIVAL: timedelta(hours=settings.ARRIVAL_TTL_HOURS),
        Phase.DEPARTURE: timedelta(hours=settings.DEPARTURE_TTL_HOURS),
    }


@dataclass
class IssuedCredential:
    credential_id: str
    wire: str
    payload: CredentialPayload

    @property
    def expires_at(self) -> datetime:
        return self.payload.expires_at


class CredentialIssuer:
    def __init__(self, db: Session, secret: str = None,
                 clock: Callable[[], datetime] = utcnow, ttls: Optional[dict] = None):
        self.db = db
        self.secret = secret or settings.CREDENTIAL_SECRET
        self.clock = clock
        self.ttls = ttls or default_ttls()

    def issue(self, reservation_id: str, subject_id: str, phase: Phase,
              linked_event_id: Optional[str] = None) -> IssuedCredential:
        """Sign, persist and return a fresh credential. Raises IssuanceError on any failure."""
        if not reservation_id or not subject_id:
            raise IssuanceError("reservation_id and subject_id are required")
        phase = Phase(phase)

        issued_at = self.clock().replace(microsecond=0)
        payload = CredentialPayload(
            id=str(uuid.uuid4()),
            reservation_id=reservation_id,
            subject_id=subject_id,
            phase=phase,
            issued_at=issued_at,
            expires_at=issued_at + self.ttls[phase],
        ).signed(self.secret)

        record = Credential(
            id=payload.id,
            token_key=token_codec.derive_key(payload),
            reservation_id=reservation_id,
            subject_id=subject_id,
            phase=phase,
            issued_at=payload.issued_at,
            expires_at=payload.expires_at,
            signature=payload.signature,
            linked_event_id=linked_event_id,
            is_used=False,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[ISSUE] Failed to persist credential for res={reservation_id} "
                         f"phase={phase.value}: {e}", exc_info=True)
            raise IssuanceError("Failed to issue credential") from e

        logger.info(f"[ISSUE] {phase.value} credential {payload.id} for res={reservation_id} "
                    f"expires {payload.expires_at.isoformat()}")
        return IssuedCredential(credential_id=payload.id, wire=token_codec.encode(payload), payload=payload)
