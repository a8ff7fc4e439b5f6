# app/services/token_codec.py
"""
Credential wire codec.

Wire form is a compact JSON object with seven fields:
  {id, reservationId, subjectId, phase, issuedAt, expiresAt, signature}

The signature is an HS256 JWS (PyJWT) with a detached payload: the payload is a
canonical byte string built from the first six fields in a fixed order, so key order
or whitespace in the scanned JSON never changes what gets signed. Only the
"header..signature" form travels in the wire object. The same canonical bytes,
unkeyed, give the lookup key.
"""

import hashlib
import json
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Union

import jwt
from jwt.api_jws import PyJWS

from app.errors import ErrorKind, ValidationError
from app.models.enums import Phase
from app.utils.clock import from_wire, to_wire

ALGORITHM = "HS256"

_jws = PyJWS()

# Order matters: it defines the canonical form
SIGNED_FIELDS = ("id", "reservationId", "subjectId", "phase", "issuedAt", "expiresAt")
WIRE_FIELDS = SIGNED_FIELDS + ("signature",)


@dataclass(frozen=True)
class CredentialPayload:
    id: str
    reservation_id: str
    subject_id: str
    phase: Phase
    issued_at: datetime
    expires_at: datetime
    signature: str = ""

    def signed(self, secret: str) -> "CredentialPayload":
        return replace(self, signature=sign(self, secret))


def _signed_values(payload: CredentialPayload) -> list:
    return [
        payload.id,
        payload.reservation_id,
        payload.subject_id,
        payload.phase.value,
        to_wire(payload.issued_at),
        to_wire(payload.expires_at),
    ]


def canonical_bytes(payload: CredentialPayload) -> bytes:
    return json.dumps(_signed_values(payload), separators=(",", ":"), ensure_ascii=True).encode("utf-8")


def sign(payload: CredentialPayload, secret: str) -> str:
    """Detached HS256 JWS over the canonical bytes ("header..signature")."""
    return _jws.encode(canonical_bytes(payload), secret, algorithm=ALGORITHM, is_payload_detached=True)


def derive_key(payload: CredentialPayload) -> str:
    """Deterministic lookup key for the stored credential record."""
    return hashlib.sha256(canonical_bytes(payload)).hexdigest()


def verify_signature(payload: CredentialPayload, secret: str, expected: str) -> bool:
    """Check `expected` (a detached JWS) against the canonical bytes of payload."""
    if not expected:
        return False
    try:
        # An attached payload would be verified instead of ours
        if jwt.get_unverified_header(expected).get("b64", True) is not False:
            return False
        _jws.decode(expected, secret, algorithms=[ALGORITHM], detached_payload=canonical_bytes(payload))
    except jwt.InvalidTokenError:
        return False
    return True


def encode(payload: CredentialPayload) -> str:
    values = _signed_values(payload) + [payload.signature]
    return json.dumps(dict(zip(WIRE_FIELDS, values)), separators=(",", ":"))


def decode(wire: Union[str, bytes, dict]) -> CredentialPayload:
    """Parse a wire credential. Raises ValidationError(MALFORMED) on any structural problem."""
    if isinstance(wire, dict):
        data = wire
    else:
        if isinstance(wire, bytes):
            wire = wire.decode("utf-8", errors="replace")
        try:
            data = json.loads(wire)
        except (TypeError, ValueError):
            raise ValidationError(ErrorKind.MALFORMED, "Credential is not valid JSON")

    if not isinstance(data, dict):
        raise ValidationError(ErrorKind.MALFORMED, "Credential must be a JSON object")

    for name in WIRE_FIELDS:
        value = data.get(name)
        if not isinstance(value, str) or not value:
            raise ValidationError(ErrorKind.MALFORMED, f"Missing or invalid field: {name}")

    try:
        phase = Phase(data["phase"])
    except ValueError:
        raise ValidationError(ErrorKind.MALFORMED, f"Unknown phase: {data['phase']}")

    try:
        issued_at = from_wire(data["issuedAt"])
        expires_at = from_wire(data["expiresAt"])
    except ValueError:
        raise ValidationError(ErrorKind.MALFORMED, "Invalid timestamp")

    return CredentialPayload(
        id=data["id"],
        reservation_id=data["reservationId"],
        subject_id=data["subjectId"],
        phase=phase,
        issued_at=issued_at,
        expires_at=expires_at,
        signature=data["signature"],
    )
