# app/models/credential.py
"""
Credentials table — one row per issued QR credential.
Lookup is by token_key (SHA-256 of the canonical payload).
Only is_used / used_at ever change after insert, and only once.
At most one credential per (reservation_id, phase) may be used.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Enum, Index, text
from app.database import Base
from app.models.enums import Phase


class Credential(Base):
    __tablename__ = "credentials"
    __table_args__ = (
        Index(
            "uq_credential_reservation_phase_used",
            "reservation_id", "phase",
            unique=True,
            sqlite_where=text("is_used"),
            postgresql_where=text("is_used"),
        ),
    )

    id = Column(String(36), primary_key=True)
    token_key = Column(String(64), unique=True, nullable=False, index=True)
    reservation_id = Column(String(100), nullable=False, index=True)
    subject_id = Column(String(100), nullable=False)
    phase = Column(Enum(Phase, native_enum=False, length=20), nullable=False)
    issued_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    signature = Column(String(255), nullable=False)   # detached JWS
    linked_event_id = Column(String(36))       # arrival event a DEPARTURE credential follows
    is_used = Column(Boolean, default=False, nullable=False)
    used_at = Column(DateTime)

    def __repr__(self):
        return f"<Credential {self.id} res={self.reservation_id} phase={self.phase} used={self.is_used}>"
