# app/services/occupancy_service.py
"""
Occupancy state machine: NONE → CHECKED_IN → CHECKED_OUT (terminal).

There is no stored state column. A reservation's state is whichever occupancy
events exist for it, and the (reservation_id, phase) unique constraint is the real
guard against double arrival/departure; the existence checks below only give a
nicer error and keep a credential from being burned on a doomed attempt.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import (
    ConflictReason, ErrorKind, InsufficientEvidence, StateConflict, StorageFailure, ValidationError,
)
from app.models.enums import OccupancyState, Phase
from app.models.occupancy_event import OccupancyEvent
from app.services.credential_validator import CredentialValidator
from app.services.evidence_gate import EvidenceGate
from app.utils.clock import utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class OccupancyStatus:
    has_arrival: bool
    has_departure: bool
    arrival_at: Optional[datetime] = None
    departure_at: Optional[datetime] = None

    @property
    def state(self) -> OccupancyState:
        if self.has_departure:
            return OccupancyState.CHECKED_OUT
        if self.has_arrival:
            return OccupancyState.CHECKED_IN
        return OccupancyState.NONE


class OccupancyStateMachine:
    def __init__(self, db: Session, validator: CredentialValidator, evidence_gate: EvidenceGate,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.validator = validator
        self.evidence_gate = evidence_gate
        self.clock = clock

    # ── Derived state ────────────────────────────────────────────────────

    def _events(self, reservation_id: str) -> dict:
        try:
            rows = self.db.query(OccupancyEvent).filter(OccupancyEvent.reservation_id == reservation_id).all()
        except SQLAlchemyError as e:
            logger.error(f"Event lookup failed for res={reservation_id}: {e}", exc_info=True)
            raise StorageFailure("Occupancy lookup failed") from e
        return {row.phase: row for row in rows}

    def status(self, reservation_id: str) -> OccupancyStatus:
        events = self._events(reservation_id)
        arrival = events.get(Phase.ARRIVAL)
        departure = events.get(Phase.DEPARTURE)
        return OccupancyStatus(
            has_arrival=arrival is not None,
            has_departure=departure is not None,
            arrival_at=arrival.occurred_at if arrival else None,
            departure_at=departure.occurred_at if departure else None,
        )

    def current_state(self, reservation_id: str) -> OccupancyState:
        return self.status(reservation_id).state

    # ── Transitions ──────────────────────────────────────────────────────

    def arrive(self, reservation_id: str, wire) -> OccupancyEvent:
        existing = self._events(reservation_id).get(Phase.ARRIVAL)
        if existing is not None:
            raise StateConflict(ConflictReason.ALREADY_ARRIVED,
                                existing_credential_id=existing.credential_id,
                                existing_subject_id=existing.subject_id)

        redeemed = self._redeem(reservation_id, wire, Phase.ARRIVAL, ConflictReason.ALREADY_ARRIVED)
        event = OccupancyEvent(
            id=str(uuid.uuid4()),
            reservation_id=reservation_id,
            subject_id=redeemed.payload.subject_id,
            phase=Phase.ARRIVAL,
            credential_id=redeemed.credential_id,
            occurred_at=self.clock(),
            payment_captured=False,
            door_opened=False,
        )
        self._commit_event(event, ConflictReason.ALREADY_ARRIVED)
        logger.info(f"[ARRIVE] res={reservation_id} subject={event.subject_id} "
                    f"credential={event.credential_id} → {OccupancyState.CHECKED_IN.value}")
        return event

    def depart(self, reservation_id: str, wire=None, subject_id: Optional[str] = None) -> OccupancyEvent:
        events = self._events(reservation_id)
        arrival = events.get(Phase.ARRIVAL)
        if arrival is None:
            raise StateConflict(ConflictReason.NOT_ARRIVED)
        departure = events.get(Phase.DEPARTURE)
        if departure is not None:
            raise StateConflict(ConflictReason.ALREADY_DEPARTED,
                                existing_credential_id=departure.credential_id,
                                existing_subject_id=departure.subject_id)

        gate = self.evidence_gate.check(reservation_id, Phase.DEPARTURE)
        if not gate.satisfied:
            logger.info(f"[DEPART] res={reservation_id} blocked: evidence {gate.current}/{gate.required}")
            raise InsufficientEvidence(current=gate.current, required=gate.required)

        credential_id = None
        if wire is not None:
            redeemed = self._redeem(reservation_id, wire, Phase.DEPARTURE,
                                    ConflictReason.ALREADY_DEPARTED)
            credential_id = redeemed.credential_id
            subject_id = redeemed.payload.subject_id

        event = OccupancyEvent(
            id=str(uuid.uuid4()),
            reservation_id=reservation_id,
            subject_id=subject_id or arrival.subject_id,
            phase=Phase.DEPARTURE,
            credential_id=credential_id,
            occurred_at=self.clock(),
            payment_captured=False,
            door_opened=False,
        )
        self._commit_event(event, ConflictReason.ALREADY_DEPARTED)
        logger.info(f"[DEPART] res={reservation_id} subject={event.subject_id} "
                    f"→ {OccupancyState.CHECKED_OUT.value}")
        return event

    def _redeem(self, reservation_id: str, wire, phase: Phase, on_duplicate: ConflictReason):
        """Redeem inside the open transaction; a use lost to a committed event is a conflict."""
        try:
            return self.validator.validate(wire, expected_phase=phase,
                                           reservation_id=reservation_id, commit=False)
        except ValidationError as e:
            if e.kind is not ErrorKind.ALREADY_USED:
                raise
            existing = self._events(reservation_id).get(phase)
            if existing is None:
                raise
            raise StateConflict(on_duplicate,
                                existing_credential_id=existing.credential_id,
                                existing_subject_id=existing.subject_id)

    def _commit_event(self, event: OccupancyEvent, on_duplicate: ConflictReason):
        """Insert the event and commit it together with any pending redemption."""
        try:
            self.db.add(event)
            self.db.commit()
        except IntegrityError:
            # Lost a race to another request; rollback also un-redeems the credential
            self.db.rollback()
            existing = self._events(event.reservation_id).get(event.phase)
            raise StateConflict(
                on_duplicate,
                existing_credential_id=existing.credential_id if existing else None,
                existing_subject_id=existing.subject_id if existing else None,
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to commit {event.phase.value} event for res={event.reservation_id}: {e}",
                         exc_info=True)
            raise StorageFailure("Failed to record occupancy event") from e
