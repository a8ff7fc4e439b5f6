# tests/conftest.py
"""Shared fixtures: a throwaway SQLite database per test and a controllable clock."""

import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Must be set before anything imports app.config
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CREDENTIAL_SECRET", "test-secret")
os.environ.setdefault("LOG_DIR", "")

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from app.database import build_engine, create_tables
from app.services.credential_issuer import CredentialIssuer
from app.services.credential_validator import CredentialValidator
from app.services.evidence_gate import EvidenceGate, EvidenceUpload
from app.services.occupancy_service import OccupancyStateMachine

SECRET = "test-secret"


class FakeClock:
    def __init__(self, now=datetime(2026, 3, 1, 15, 0, 0)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'checkin.db'}")
    create_tables(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(db, clock):
    return CredentialIssuer(db, secret=SECRET, clock=clock)


@pytest.fixture
def validator(db, clock):
    return CredentialValidator(db, secret=SECRET, clock=clock)


@pytest.fixture
def gate(db, clock):
    return EvidenceGate(db, clock=clock, min_items=2, max_items=5,
                        max_bytes=5 * 1024 * 1024, allowed_types=["image/jpeg", "image/png"],
                        retention_days=90)


@pytest.fixture
def machine(db, validator, gate, clock):
    return OccupancyStateMachine(db, validator, gate, clock=clock)


def photo(n=0, size=200_000, content_type="image/jpeg", captured_by="guest-1"):
    return EvidenceUpload(reference=f"uploads/photo_{n}.jpg", content_type=content_type,
                          size_bytes=size, captured_by=captured_by)
