# app/routers/occupancy.py
"""Check-in / check-out transitions and derived status."""

from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.database import SessionLocal
from app.dependencies import get_state_machine
from app.schemas.occupancy_event import (
    ArriveRequest, DepartRequest, OccupancyEventOut, OccupancyStatusOut,
)
from app.services.hook_service import arrival_hooks
from app.services.occupancy_service import OccupancyStateMachine

router = APIRouter()


@router.post("/occupancy/arrive", response_model=OccupancyEventOut, status_code=status.HTTP_201_CREATED,
             summary="Check in with an ARRIVAL credential")
def arrive(body: ArriveRequest, background_tasks: BackgroundTasks,
           machine: OccupancyStateMachine = Depends(get_state_machine)):
    event = OccupancyEventOut.model_validate(machine.arrive(body.reservation_id, body.credential))
    # Payment capture / door unlock run after the response; failures never undo the arrival
    background_tasks.add_task(arrival_hooks.run, event, SessionLocal)
    return event


@router.post("/occupancy/depart", response_model=OccupancyEventOut, status_code=status.HTTP_201_CREATED,
             summary="Check out (requires departure photos)")
def depart(body: DepartRequest, machine: OccupancyStateMachine = Depends(get_state_machine)):
    event = machine.depart(body.reservation_id, body.credential, subject_id=body.subject_id)
    return OccupancyEventOut.model_validate(event)


@router.get("/occupancy/{reservation_id}/status", response_model=OccupancyStatusOut,
            summary="Derived check-in / check-out status")
def get_status(reservation_id: str, machine: OccupancyStateMachine = Depends(get_state_machine)):
    s = machine.status(reservation_id)
    return OccupancyStatusOut(
        reservation_id=reservation_id,
        state=s.state,
        has_arrival=s.has_arrival,
        has_departure=s.has_departure,
        arrival_at=s.arrival_at,
        departure_at=s.departure_at,
    )
