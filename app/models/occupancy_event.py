# app/models/occupancy_event.py
"""
Occupancy events table — the authoritative record of a completed ARRIVAL or DEPARTURE.
The (reservation_id, phase) unique constraint is what keeps a reservation to one of each.
Current occupancy state is derived from these rows; nothing else stores it.
"""

from sqlalchemy import Column, String, DateTime, Boolean, Enum, UniqueConstraint
from app.database import Base
from app.models.enums import Phase


class OccupancyEvent(Base):
    __tablename__ = "occupancy_events"
    __table_args__ = (
        UniqueConstraint("reservation_id", "phase", name="uq_occupancy_event_reservation_phase"),
    )

    id = Column(String(36), primary_key=True)
    reservation_id = Column(String(100), nullable=False, index=True)
    subject_id = Column(String(100), nullable=False)
    phase = Column(Enum(Phase, native_enum=False, length=20), nullable=False)
    credential_id = Column(String(36))          # NULL for a departure made without a credential
    occurred_at = Column(DateTime, nullable=False)
    payment_captured = Column(Boolean, default=False, nullable=False)
    door_opened = Column(Boolean, default=False, nullable=False)

    def __repr__(self):
        return f"<OccupancyEvent {self.id} res={self.reservation_id} phase={self.phase}>"
