# tests/test_occupancy_service.py
"""Tests for the check-in / check-out state machine."""

import pytest

from app.errors import (
    ConflictReason, ErrorKind, InsufficientEvidence, StateConflict, ValidationError,
)
from app.models.credential import Credential
from app.models.enums import OccupancyState, Phase
from app.models.occupancy_event import OccupancyEvent
from conftest import photo


def checked_in(issuer, machine, reservation_id="R1"):
    issued = issuer.issue(reservation_id, "guest-1", Phase.ARRIVAL)
    return issued, machine.arrive(reservation_id, issued.wire)


class TestArrive:
    def test_arrival_scenario(self, issuer, validator, machine):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        assert validator.inspect(issued.wire).reservation_id == "R1"

        event = machine.arrive("R1", issued.wire)
        assert event.phase is Phase.ARRIVAL
        assert event.credential_id == issued.credential_id
        assert event.subject_id == "guest-1"
        assert event.payment_captured is False and event.door_opened is False
        assert machine.current_state("R1") is OccupancyState.CHECKED_IN

        with pytest.raises(ValidationError) as exc:
            validator.validate(issued.wire)
        assert exc.value.kind is ErrorKind.ALREADY_USED

    def test_second_arrival_is_conflict_naming_existing_credential(self, issuer, machine, db):
        first, _ = checked_in(issuer, machine)
        second = issuer.issue("R1", "guest-2", Phase.ARRIVAL)

        with pytest.raises(StateConflict) as exc:
            machine.arrive("R1", second.wire)
        assert exc.value.reason is ConflictReason.ALREADY_ARRIVED
        assert exc.value.existing_credential_id == first.credential_id

        # the refused credential is still usable elsewhere in its lifetime
        record = db.query(Credential).filter(Credential.id == second.credential_id).one()
        assert record.is_used is False

    def test_replayed_arrival_is_conflict_not_already_used(self, issuer, machine):
        issued, _ = checked_in(issuer, machine)

        with pytest.raises(StateConflict) as exc:
            machine.arrive("R1", issued.wire)
        assert exc.value.existing_credential_id == issued.credential_id

    def test_departure_credential_cannot_check_in(self, issuer, machine):
        issued = issuer.issue("R1", "guest-1", Phase.DEPARTURE)

        with pytest.raises(ValidationError) as exc:
            machine.arrive("R1", issued.wire)
        assert exc.value.kind is ErrorKind.PHASE_MISMATCH
        assert machine.current_state("R1") is OccupancyState.NONE

    def test_credential_for_other_reservation_refused(self, issuer, machine):
        issued = issuer.issue("R2", "guest-1", Phase.ARRIVAL)

        with pytest.raises(ValidationError) as exc:
            machine.arrive("R1", issued.wire)
        assert exc.value.kind is ErrorKind.RESERVATION_MISMATCH

    def test_lost_insert_race_rolls_back_redemption(self, issuer, machine, db, monkeypatch):
        first, _ = checked_in(issuer, machine)
        second = issuer.issue("R1", "guest-2", Phase.ARRIVAL)

        # Pretend the existence check ran before the other request committed
        real_events = machine._events
        calls = {"n": 0}

        def racing_events(reservation_id):
            calls["n"] += 1
            return {} if calls["n"] == 1 else real_events(reservation_id)

        monkeypatch.setattr(machine, "_events", racing_events)

        with pytest.raises(StateConflict) as exc:
            machine.arrive("R1", second.wire)
        assert exc.value.existing_credential_id == first.credential_id

        record = db.query(Credential).filter(Credential.id == second.credential_id).one()
        assert record.is_used is False
        assert db.query(OccupancyEvent).filter(OccupancyEvent.reservation_id == "R1").count() == 1


class TestDepart:
    def test_depart_before_arrive_is_conflict(self, machine):
        with pytest.raises(StateConflict) as exc:
            machine.depart("R1")
        assert exc.value.reason is ConflictReason.NOT_ARRIVED

    def test_departure_scenario_with_evidence_gate(self, issuer, machine, gate):
        checked_in(issuer, machine)
        gate.record_evidence("R1", Phase.DEPARTURE, photo(1))

        with pytest.raises(InsufficientEvidence) as exc:
            machine.depart("R1")
        assert (exc.value.current, exc.value.required) == (1, 2)
        assert machine.current_state("R1") is OccupancyState.CHECKED_IN

        gate.record_evidence("R1", Phase.DEPARTURE, photo(2))
        event = machine.depart("R1")
        assert event.phase is Phase.DEPARTURE
        assert event.subject_id == "guest-1"
        assert machine.current_state("R1") is OccupancyState.CHECKED_OUT

    def test_arrival_photos_do_not_count_for_departure(self, issuer, machine, gate):
        checked_in(issuer, machine)
        gate.record_evidence_batch("R1", Phase.ARRIVAL, [photo(1), photo(2)])

        with pytest.raises(InsufficientEvidence) as exc:
            machine.depart("R1")
        assert exc.value.current == 0

    def test_second_departure_is_conflict(self, issuer, machine, gate):
        checked_in(issuer, machine)
        gate.record_evidence_batch("R1", Phase.DEPARTURE, [photo(1), photo(2)])
        machine.depart("R1", subject_id="guest-1")

        with pytest.raises(StateConflict) as exc:
            machine.depart("R1", subject_id="guest-1")
        assert exc.value.reason is ConflictReason.ALREADY_DEPARTED
        assert exc.value.existing_subject_id == "guest-1"

    def test_departure_with_credential_redeems_it(self, issuer, machine, gate, validator):
        _, arrival = checked_in(issuer, machine)
        out = issuer.issue("R1", "guest-1", Phase.DEPARTURE, linked_event_id=arrival.id)
        gate.record_evidence_batch("R1", Phase.DEPARTURE, [photo(1), photo(2)])

        event = machine.depart("R1", out.wire)
        assert event.credential_id == out.credential_id
        with pytest.raises(ValidationError) as exc:
            validator.validate(out.wire)
        assert exc.value.kind is ErrorKind.ALREADY_USED

    def test_arrival_credential_cannot_check_out(self, issuer, machine, gate):
        checked_in(issuer, machine)
        other = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        gate.record_evidence_batch("R1", Phase.DEPARTURE, [photo(1), photo(2)])

        with pytest.raises(ValidationError) as exc:
            machine.depart("R1", other.wire)
        assert exc.value.kind is ErrorKind.PHASE_MISMATCH


class TestStatus:
    def test_status_is_derived_from_events(self, issuer, machine, gate, clock):
        s = machine.status("R1")
        assert (s.has_arrival, s.has_departure, s.state) == (False, False, OccupancyState.NONE)

        checked_in(issuer, machine)
        arrived_at = clock()
        clock.advance(days=2)
        gate.record_evidence_batch("R1", Phase.DEPARTURE, [photo(1), photo(2)])
        machine.depart("R1")

        s = machine.status("R1")
        assert s.has_arrival and s.has_departure
        assert s.arrival_at == arrived_at
        assert s.departure_at == clock()
        assert s.state is OccupancyState.CHECKED_OUT
