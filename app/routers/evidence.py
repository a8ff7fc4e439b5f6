# app/routers/evidence.py
"""Room-condition photo metadata — batch upload and listing."""

from typing import Optional

from fastapi import APIRouter, Depends, status

from app.dependencies import get_evidence_gate
from app.models.enums import Phase
from app.schemas.evidence_item import EvidenceBatchOut, EvidenceBatchRequest, EvidenceItemOut
from app.services.evidence_gate import EvidenceGate, EvidenceUpload

router = APIRouter()


@router.post("/evidence", response_model=EvidenceBatchOut, status_code=status.HTTP_201_CREATED,
             summary="Upload a batch of evidence items (all or nothing)")
def upload_evidence(body: EvidenceBatchRequest, gate: EvidenceGate = Depends(get_evidence_gate)):
    items = [EvidenceUpload(**item.model_dump()) for item in body.items]
    rows = gate.record_evidence_batch(body.reservation_id, body.phase, items)
    return EvidenceBatchOut(
        reservation_id=body.reservation_id,
        phase=body.phase,
        count=len(rows),
        items=[EvidenceItemOut.model_validate(r) for r in rows],
    )


@router.get("/evidence/{reservation_id}", response_model=list[EvidenceItemOut],
            summary="List evidence for a reservation")
def list_evidence(reservation_id: str, phase: Optional[Phase] = None,
                  gate: EvidenceGate = Depends(get_evidence_gate)):
    return gate.list_for(reservation_id, phase)
