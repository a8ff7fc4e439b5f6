# app/services/credential_validator.py
"""
Credential validation and redemption.

validate() runs the checks in order and stops at the first failure:
  decode → lookup → signature → expiry → used → (phase / reservation) → redeem

Redemption is one conditional UPDATE guarded by is_used = false, and a partial
unique index allows one used credential per reservation + phase. Two scanners racing
on the same credential both reach that UPDATE; the store lets exactly one row change,
and the loser gets ALREADY_USED.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ErrorKind, StorageFailure, ValidationError
from app.models.credential import Credential
from app.models.enums import Phase
from app.services import token_codec
from app.services.token_codec import CredentialPayload
from app.utils.clock import utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ValidatedCredential:
    credential_id: str
    payload: CredentialPayload
    used_at: Optional[datetime] = None

    @property
    def reservation_id(self) -> str:
        return self.payload.reservation_id

    @property
    def phase(self) -> Phase:
        return self.payload.phase


class CredentialValidator:
    def __init__(self, db: Session, secret: str = None, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.secret = secret or settings.CREDENTIAL_SECRET
        self.clock = clock

    def inspect(self, wire: Union[str, bytes, dict]) -> ValidatedCredential:
        """Checks 1-5 without redeeming. Used by the validate-only boundary."""
        payload, record = self._check(wire)
        return ValidatedCredential(credential_id=record.id, payload=payload)

    def validate(self, wire: Union[str, bytes, dict], expected_phase: Optional[Phase] = None,
                 reservation_id: Optional[str] = None, commit: bool = True) -> ValidatedCredential:
        """
        Full validation plus redemption.
        With commit=False the redemption joins the caller's open transaction, so the
        caller can commit it together with the occupancy event (or roll both back).
        """
        payload, record = self._check(wire)

        if expected_phase is not None and payload.phase is not Phase(expected_phase):
            raise ValidationError(
                ErrorKind.PHASE_MISMATCH,
                f"{payload.phase.value} credential cannot be used for {Phase(expected_phase).value}",
            )
        if reservation_id is not None and payload.reservation_id != reservation_id:
            raise ValidationError(ErrorKind.RESERVATION_MISMATCH,
                                  "Credential belongs to a different reservation")

        used_at = self.clock()
        try:
            result = self.db.execute(
                update(Credential)
                .where(Credential.id == record.id, Credential.is_used.is_(False))
                .values(is_used=True, used_at=used_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                logger.info(f"[REDEEM] Lost redemption race for credential {record.id}")
                raise ValidationError(ErrorKind.ALREADY_USED, "Token already used")
            if commit:
                self.db.commit()
        except IntegrityError:
            # another credential for this reservation + phase is already used
            self.db.rollback()
            logger.info(f"[REDEEM] res={payload.reservation_id} phase={payload.phase.value} already "
                        f"redeemed by another credential, refusing {record.id}")
            raise ValidationError(ErrorKind.ALREADY_USED,
                                  f"A {payload.phase.value} credential was already used for this reservation")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[REDEEM] Store error redeeming credential {record.id}: {e}", exc_info=True)
            raise StorageFailure("Credential redemption failed") from e

        logger.info(f"[REDEEM] Credential {record.id} redeemed for res={payload.reservation_id} "
                    f"phase={payload.phase.value}")
        return ValidatedCredential(credential_id=record.id, payload=payload, used_at=used_at)

    def _check(self, wire) -> tuple:
        payload = token_codec.decode(wire)

        try:
            record = (
                self.db.query(Credential)
                .filter(Credential.token_key == token_codec.derive_key(payload))
                .first()
            )
        except SQLAlchemyError as e:
            logger.error(f"[REDEEM] Store error looking up credential {payload.id}: {e}", exc_info=True)
            raise StorageFailure("Credential lookup failed") from e
        if record is None:
            raise ValidationError(ErrorKind.NOT_FOUND, "Token not found")

        if not (token_codec.verify_signature(payload, self.secret, payload.signature)
                and token_codec.verify_signature(payload, self.secret, record.signature)):
            logger.warning(f"[REDEEM] Signature mismatch on credential {record.id}")
            raise ValidationError(ErrorKind.SIGNATURE_MISMATCH, "QR signature invalid")

        if self.clock() >= record.expires_at:
            raise ValidationError(ErrorKind.EXPIRED, "Token expired")

        if record.is_used:
            raise ValidationError(ErrorKind.ALREADY_USED, "Token already used")

        return payload, record
