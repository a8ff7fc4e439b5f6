# app/services/evidence_gate.py
"""
Evidence gate — photo count / type / size policy per reservation + phase.

MAX is enforced at upload so an over-full set is never stored; MIN is checked when
a transition asks whether the gate is satisfied. A batch is judged as a whole
before anything is written: one bad item, or a batch that would overflow MAX,
rejects the lot.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import RejectionError, StorageFailure
from app.models.enums import Phase
from app.models.evidence_item import EvidenceItem
from app.utils.clock import utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class EvidenceUpload:
    reference: str            # where external storage put the photo bytes
    content_type: str
    size_bytes: int
    captured_by: str


@dataclass
class GateResult:
    current: int
    required: int
    satisfied: bool


class EvidenceGate:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow,
                 min_items: int = None, max_items: int = None, max_bytes: int = None,
                 allowed_types: Optional[Iterable[str]] = None, retention_days: int = None):
        self.db = db
        self.clock = clock
        self.min_items = settings.EVIDENCE_MIN_ITEMS if min_items is None else min_items
        self.max_items = settings.EVIDENCE_MAX_ITEMS if max_items is None else max_items
        self.max_bytes = settings.EVIDENCE_MAX_BYTES if max_bytes is None else max_bytes
        self.allowed_types = set(allowed_types or settings.EVIDENCE_ALLOWED_TYPES)
        self.retention = timedelta(days=settings.EVIDENCE_RETENTION_DAYS if retention_days is None
                                   else retention_days)

    # ── Queries ──────────────────────────────────────────────────────────

    def count_for(self, reservation_id: str, phase: Phase) -> int:
        try:
            return (
                self.db.query(func.count(EvidenceItem.id))
                .filter(EvidenceItem.reservation_id == reservation_id,
                        EvidenceItem.phase == Phase(phase))
                .scalar()
            ) or 0
        except SQLAlchemyError as e:
            logger.error(f"[EVIDENCE] Count failed for res={reservation_id}: {e}", exc_info=True)
            raise StorageFailure("Evidence lookup failed") from e

    def check(self, reservation_id: str, phase: Phase) -> GateResult:
        current = self.count_for(reservation_id, phase)
        return GateResult(
            current=current,
            required=self.min_items,
            satisfied=self.min_items <= current <= self.max_items,
        )

    def is_satisfied(self, reservation_id: str, phase: Phase) -> bool:
        return self.check(reservation_id, phase).satisfied

    def list_for(self, reservation_id: str, phase: Optional[Phase] = None) -> list:
        q = self.db.query(EvidenceItem).filter(EvidenceItem.reservation_id == reservation_id)
        if phase is not None:
            q = q.filter(EvidenceItem.phase == Phase(phase))
        return q.order_by(EvidenceItem.uploaded_at.desc()).all()

    # ── Uploads ──────────────────────────────────────────────────────────

    def validate_item(self, item: EvidenceUpload, index: Optional[int] = None):
        """Per-item policy. Raises RejectionError naming the offending item."""
        if not item.reference:
            raise RejectionError("No file provided", index)
        if item.size_bytes is None or item.size_bytes <= 0:
            raise RejectionError("File is empty", index)
        if item.size_bytes > self.max_bytes:
            raise RejectionError(f"File size exceeds {self.max_bytes // (1024 * 1024)}MB limit", index)
        if item.content_type not in self.allowed_types:
            raise RejectionError("Only JPEG and PNG images are allowed", index)
        if not item.captured_by:
            raise RejectionError("captured_by is required", index)

    def record_evidence(self, reservation_id: str, phase: Phase, item: EvidenceUpload) -> EvidenceItem:
        return self.record_evidence_batch(reservation_id, phase, [item])[0]

    def record_evidence_batch(self, reservation_id: str, phase: Phase, items: list) -> list:
        """All-or-nothing: every check runs before the first row is added."""
        phase = Phase(phase)
        if not items:
            raise RejectionError("No photos provided")

        for index, item in enumerate(items):
            self.validate_item(item, index)

        existing = self.count_for(reservation_id, phase)
        if existing + len(items) > self.max_items:
            raise RejectionError(
                f"Maximum {self.max_items} photos allowed for {phase.value} "
                f"({existing} already uploaded)"
            )

        uploaded_at = self.clock()
        rows = [
            EvidenceItem(
                id=str(uuid.uuid4()),
                reservation_id=reservation_id,
                phase=phase,
                reference=item.reference,
                content_type=item.content_type,
                size_bytes=item.size_bytes,
                captured_by=item.captured_by,
                uploaded_at=uploaded_at,
                expires_at=uploaded_at + self.retention,
            )
            for item in items
        ]
        try:
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[EVIDENCE] Failed to store {len(rows)} items for res={reservation_id} "
                         f"phase={phase.value}: {e}", exc_info=True)
            raise StorageFailure("Failed to store evidence") from e

        logger.info(f"[EVIDENCE] res={reservation_id} phase={phase.value} "
                    f"+{len(rows)} → {existing + len(rows)}/{self.max_items}")
        return rows
