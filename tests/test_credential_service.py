# tests/test_credential_service.py
"""Tests for credential issuance, validation and single-use redemption."""

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.errors import ErrorKind, IssuanceError, ValidationError
from app.models.credential import Credential
from app.models.enums import Phase
from app.services.credential_issuer import CredentialIssuer
from app.services.credential_validator import CredentialValidator
from conftest import SECRET


def tamper(wire, **changes):
    data = json.loads(wire)
    data.update(changes)
    return json.dumps(data)


class TestIssue:
    def test_persists_unused_record_with_phase_ttl(self, issuer, db, clock):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        record = db.query(Credential).filter(Credential.id == issued.credential_id).one()
        assert record.is_used is False
        assert record.used_at is None
        assert (record.expires_at - record.issued_at).total_seconds() == 48 * 3600
        assert record.signature == issued.payload.signature

    def test_departure_ttl_is_shorter_and_linked_event_recorded(self, issuer, db):
        issued = issuer.issue("R1", "guest-1", Phase.DEPARTURE, linked_event_id="evt-1")

        record = db.query(Credential).filter(Credential.id == issued.credential_id).one()
        assert (record.expires_at - record.issued_at).total_seconds() == 24 * 3600
        assert record.linked_event_id == "evt-1"

    def test_persistence_failure_raises_issuance_error(self, clock):
        db = MagicMock()
        db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

        with pytest.raises(IssuanceError):
            CredentialIssuer(db, secret=SECRET, clock=clock).issue("R1", "guest-1", Phase.ARRIVAL)
        db.rollback.assert_called_once()

    def test_missing_reservation_rejected(self, issuer):
        with pytest.raises(IssuanceError):
            issuer.issue("", "guest-1", Phase.ARRIVAL)


class TestValidate:
    @pytest.mark.parametrize("phase", [Phase.ARRIVAL, Phase.DEPARTURE])
    def test_validate_right_after_issue_succeeds(self, issuer, validator, phase):
        issued = issuer.issue("R7", "guest-1", phase)

        result = validator.validate(issued.wire)
        assert result.reservation_id == "R7"
        assert result.phase is phase
        assert result.credential_id == issued.credential_id

    def test_second_validate_is_already_used(self, issuer, validator, db):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        validator.validate(issued.wire)

        with pytest.raises(ValidationError) as exc:
            validator.validate(issued.wire)
        assert exc.value.kind is ErrorKind.ALREADY_USED

        record = db.query(Credential).filter(Credential.id == issued.credential_id).one()
        assert record.is_used is True
        assert record.used_at is not None

    def test_expired_even_when_unused(self, issuer, validator, clock):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        clock.advance(hours=48)

        with pytest.raises(ValidationError) as exc:
            validator.validate(issued.wire)
        assert exc.value.kind is ErrorKind.EXPIRED

    def test_expired_takes_precedence_over_used(self, issuer, validator, clock):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        validator.validate(issued.wire)
        clock.advance(hours=49)

        with pytest.raises(ValidationError) as exc:
            validator.validate(issued.wire)
        assert exc.value.kind is ErrorKind.EXPIRED

    def test_malformed(self, validator):
        with pytest.raises(ValidationError) as exc:
            validator.validate("{not json")
        assert exc.value.kind is ErrorKind.MALFORMED

    def test_edited_reservation_is_not_found(self, issuer, validator):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        with pytest.raises(ValidationError) as exc:
            validator.validate(tamper(issued.wire, reservationId="R2"))
        assert exc.value.kind is ErrorKind.NOT_FOUND

    def test_edited_signature_is_mismatch(self, issuer, validator):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        with pytest.raises(ValidationError) as exc:
            validator.validate(tamper(issued.wire, signature="0" * 64))
        assert exc.value.kind is ErrorKind.SIGNATURE_MISMATCH

    def test_wrong_server_secret_is_mismatch(self, issuer, db, clock):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        with pytest.raises(ValidationError) as exc:
            CredentialValidator(db, secret="rotated", clock=clock).validate(issued.wire)
        assert exc.value.kind is ErrorKind.SIGNATURE_MISMATCH

    def test_phase_mismatch_does_not_burn_credential(self, issuer, validator):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        with pytest.raises(ValidationError) as exc:
            validator.validate(issued.wire, expected_phase=Phase.DEPARTURE)
        assert exc.value.kind is ErrorKind.PHASE_MISMATCH

        assert validator.validate(issued.wire, expected_phase=Phase.ARRIVAL).phase is Phase.ARRIVAL

    def test_reservation_mismatch(self, issuer, validator):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        with pytest.raises(ValidationError) as exc:
            validator.validate(issued.wire, reservation_id="R9")
        assert exc.value.kind is ErrorKind.RESERVATION_MISMATCH

    def test_inspect_does_not_redeem(self, issuer, validator):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)

        validator.inspect(issued.wire)
        validator.inspect(issued.wire)
        assert validator.validate(issued.wire).credential_id == issued.credential_id

    def test_one_used_credential_per_reservation_and_phase(self, issuer, validator, db):
        first = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        second = issuer.issue("R1", "guest-2", Phase.ARRIVAL)
        validator.validate(first.wire)

        with pytest.raises(ValidationError) as exc:
            validator.validate(second.wire)
        assert exc.value.kind is ErrorKind.ALREADY_USED

        record = db.query(Credential).filter(Credential.id == second.credential_id).one()
        assert record.is_used is False
        assert db.query(Credential).filter(Credential.is_used.is_(True)).count() == 1

    def test_other_phase_and_reservation_still_redeemable(self, issuer, validator):
        validator.validate(issuer.issue("R1", "guest-1", Phase.ARRIVAL).wire)

        assert validator.validate(issuer.issue("R1", "guest-1", Phase.DEPARTURE).wire).phase is Phase.DEPARTURE
        assert validator.validate(issuer.issue("R2", "guest-1", Phase.ARRIVAL).wire).reservation_id == "R2"


class TestRedemptionRace:
    def test_exactly_one_of_many_concurrent_validations_wins(self, issuer, session_factory, clock):
        issued = issuer.issue("R1", "guest-1", Phase.ARRIVAL)
        n = 8
        barrier = threading.Barrier(n)

        def attempt():
            session = session_factory()
            try:
                barrier.wait()
                CredentialValidator(session, secret=SECRET, clock=clock).validate(issued.wire)
                return "ok"
            except ValidationError as e:
                return e.kind
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=n) as pool:
            outcomes = list(pool.map(lambda _: attempt(), range(n)))

        assert outcomes.count("ok") == 1
        assert outcomes.count(ErrorKind.ALREADY_USED) == n - 1
