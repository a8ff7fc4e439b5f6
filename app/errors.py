# app/errors.py
"""
Error taxonomy for the check-in core.

Validation and transition errors are expected outcomes: routers turn them into a
structured JSON body and the client rebuilds the same exception from that body.
IssuanceError / StorageFailure are infrastructure failures and never carry
internal detail to the caller.
"""

import enum
from typing import Optional


class ErrorKind(str, enum.Enum):
    # validation-time
    MALFORMED = "MALFORMED"
    NOT_FOUND = "NOT_FOUND"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    EXPIRED = "EXPIRED"
    ALREADY_USED = "ALREADY_USED"
    PHASE_MISMATCH = "PHASE_MISMATCH"
    RESERVATION_MISMATCH = "RESERVATION_MISMATCH"
    # transition-time
    STATE_CONFLICT = "STATE_CONFLICT"
    INSUFFICIENT_EVIDENCE = "INSUFFICIENT_EVIDENCE"
    # evidence item
    REJECTED = "REJECTED"
    # infrastructure
    ISSUANCE_FAILED = "ISSUANCE_FAILED"
    STORAGE_FAILURE = "STORAGE_FAILURE"
    TRANSIENT = "TRANSIENT"


class ConflictReason(str, enum.Enum):
    ALREADY_ARRIVED = "ALREADY_ARRIVED"
    ALREADY_DEPARTED = "ALREADY_DEPARTED"
    NOT_ARRIVED = "NOT_ARRIVED"


VALIDATION_KINDS = {
    ErrorKind.MALFORMED,
    ErrorKind.NOT_FOUND,
    ErrorKind.SIGNATURE_MISMATCH,
    ErrorKind.EXPIRED,
    ErrorKind.ALREADY_USED,
    ErrorKind.PHASE_MISMATCH,
    ErrorKind.RESERVATION_MISMATCH,
}


class CheckinError(Exception):
    """Base class. `kind` is what callers switch on; `detail` is the caller-facing reason."""

    kind: ErrorKind = ErrorKind.STORAGE_FAILURE
    status_code: int = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "detail": self.detail}


class ValidationError(CheckinError):
    status_code = 400

    def __init__(self, kind: ErrorKind, detail: str = ""):
        if kind not in VALIDATION_KINDS:
            raise ValueError(f"{kind} is not a validation error kind")
        super().__init__(detail or kind.value.replace("_", " ").capitalize())
        self.kind = kind
        if kind is ErrorKind.ALREADY_USED:
            self.status_code = 409
        elif kind is ErrorKind.NOT_FOUND:
            self.status_code = 404


class StateConflict(CheckinError):
    kind = ErrorKind.STATE_CONFLICT
    status_code = 409

    def __init__(self, reason: ConflictReason, detail: str = "",
                 existing_credential_id: Optional[str] = None,
                 existing_subject_id: Optional[str] = None):
        super().__init__(detail or _CONFLICT_DETAIL[reason])
        self.reason = reason
        self.existing_credential_id = existing_credential_id
        self.existing_subject_id = existing_subject_id

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update({
            "reason": self.reason.value,
            "existing_credential_id": self.existing_credential_id,
            "existing_subject_id": self.existing_subject_id,
        })
        return body


_CONFLICT_DETAIL = {
    ConflictReason.ALREADY_ARRIVED: "Check-in already completed for this reservation",
    ConflictReason.ALREADY_DEPARTED: "Check-out already completed for this reservation",
    ConflictReason.NOT_ARRIVED: "No check-in found for this reservation",
}


class InsufficientEvidence(CheckinError):
    kind = ErrorKind.INSUFFICIENT_EVIDENCE
    status_code = 422

    def __init__(self, current: int, required: int, detail: str = ""):
        super().__init__(detail or f"Minimum {required} photos required, {current} uploaded")
        self.current = current
        self.required = required

    def to_dict(self) -> dict:
        body = super().to_dict()
        body.update({"current": self.current, "required": self.required})
        return body


class RejectionError(CheckinError):
    kind = ErrorKind.REJECTED
    status_code = 422

    def __init__(self, detail: str, index: Optional[int] = None):
        super().__init__(detail)
        self.index = index

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["index"] = self.index
        return body


class IssuanceError(CheckinError):
    kind = ErrorKind.ISSUANCE_FAILED
    status_code = 500


class StorageFailure(CheckinError):
    kind = ErrorKind.STORAGE_FAILURE
    status_code = 503


class TransientFailure(CheckinError):
    """Client side only: timeout or connection failure before a definitive answer."""

    kind = ErrorKind.TRANSIENT
    status_code = 503


def error_from_dict(body: dict, status_code: int = 400) -> CheckinError:
    """Rebuild a domain exception from an error response body."""
    try:
        kind = ErrorKind(body.get("error"))
    except ValueError:
        return StorageFailure(f"Unexpected error response (HTTP {status_code})")
    detail = body.get("detail") or ""

    if kind in VALIDATION_KINDS:
        return ValidationError(kind, detail)
    if kind is ErrorKind.STATE_CONFLICT:
        try:
            reason = ConflictReason(body.get("reason"))
        except ValueError:
            reason = ConflictReason.ALREADY_ARRIVED
        return StateConflict(reason, detail,
                             existing_credential_id=body.get("existing_credential_id"),
                             existing_subject_id=body.get("existing_subject_id"))
    if kind is ErrorKind.INSUFFICIENT_EVIDENCE:
        return InsufficientEvidence(int(body.get("current", 0)), int(body.get("required", 0)), detail)
    if kind is ErrorKind.REJECTED:
        return RejectionError(detail, body.get("index"))
    if kind is ErrorKind.ISSUANCE_FAILED:
        return IssuanceError(detail)
    if kind is ErrorKind.TRANSIENT:
        return TransientFailure(detail)
    return StorageFailure(detail)
