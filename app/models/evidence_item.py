# app/models/evidence_item.py
"""
Evidence items table — photo metadata for a reservation + phase.
Photo bytes live in external storage; `reference` points at them.
expires_at is the retention horizon, fixed at upload.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum
from app.database import Base
from app.models.enums import Phase


class EvidenceItem(Base):
    __tablename__ = "evidence_items"

    id = Column(String(36), primary_key=True)
    reservation_id = Column(String(100), nullable=False, index=True)
    phase = Column(Enum(Phase, native_enum=False, length=20), nullable=False, index=True)
    reference = Column(String(500), nullable=False)
    content_type = Column(String(50), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    captured_by = Column(String(100), nullable=False)
    uploaded_at = Column(DateTime, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<EvidenceItem {self.id} res={self.reservation_id} phase={self.phase} size={self.size_bytes}>"
