"""Meter reading assignment API routes."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from meter_cycles.api.dependencies import get_actor_id, get_meter_registry, get_unit_directory
from meter_cycles.api.schemas import (
    AssignmentCreatePayload,
    AssignmentProgressResponse,
    AssignmentResponse,
)
from meter_cycles.services import get_db
from meter_cycles.services.assignment_service import AssignmentService
from meter_cycles.services.completion_gate import CompletionGate
from meter_cycles.services.errors import ValidationError
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.progress_service import ProgressService
from meter_cycles.services.unit_directory import UnitDirectoryClient

router = APIRouter(prefix="/api/meter-reading-assignments", tags=["assignments"])


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
def create_assignment(
    payload: AssignmentCreatePayload,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
    actor_id: str | None = Depends(get_actor_id),
) -> AssignmentResponse:
    """
    Assign a building, floor range or unit selection of a cycle to a staff member.

    Returns:
        201: Assignment with its frozen unit set
        404: Unknown cycle or building
        409: Cycle closed, or units already assigned in this cycle
        422: Bad dates or floors, or no billable units in scope
        503: Unit directory unreachable
    """
    assignment = AssignmentService(db, units, meters).create_assignment(
        cycle_id=payload.cycle_id,
        building_id=payload.building_id,
        assigned_to=payload.assigned_to,
        start_date=payload.start_date,
        end_date=payload.end_date,
        floor_from=payload.floor_from,
        floor_to=payload.floor_to,
        unit_ids=payload.unit_ids,
        note=payload.note,
        assigned_by=actor_id,
    )
    return AssignmentResponse.model_validate(assignment)


@router.get("", response_model=list[AssignmentResponse])
def list_assignments(
    cycle_id: int | None = None,
    assigned_to: str | None = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
) -> list[AssignmentResponse]:
    """List assignments of a cycle or of a staff member."""
    service = AssignmentService(db, units, meters)
    if cycle_id is not None:
        assignments = service.list_by_cycle(cycle_id, include_cancelled=not active_only)
        if assigned_to:
            assignments = [a for a in assignments if a.assigned_to == assigned_to]
    elif assigned_to:
        assignments = service.list_by_staff(assigned_to, active_only=active_only)
    else:
        raise ValidationError("Either cycle_id or assigned_to is required")
    return [AssignmentResponse.model_validate(a) for a in assignments]


@router.get("/{assignment_id}", response_model=AssignmentResponse)
def get_assignment(
    assignment_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
) -> AssignmentResponse:
    assignment = AssignmentService(db, units, meters).get(assignment_id)
    return AssignmentResponse.model_validate(assignment)


@router.post("/{assignment_id}/cancel", response_model=AssignmentResponse)
def cancel_assignment(
    assignment_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
    actor_id: str | None = Depends(get_actor_id),
) -> AssignmentResponse:
    """Cancel an open assignment and release its units."""
    assignment = AssignmentService(db, units, meters).cancel_assignment(
        assignment_id, actor_id=actor_id
    )
    return AssignmentResponse.model_validate(assignment)


@router.get("/{assignment_id}/progress", response_model=AssignmentProgressResponse)
def get_assignment_progress(
    assignment_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
) -> AssignmentProgressResponse:
    progress = ProgressService(db, units, meters).assignment_progress(assignment_id)
    return AssignmentProgressResponse.model_validate(progress)


@router.post("/{assignment_id}/complete", response_model=AssignmentResponse)
def complete_assignment(
    assignment_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
    actor_id: str | None = Depends(get_actor_id),
) -> AssignmentResponse:
    """
    Complete an assignment whose units all have a reading in the cycle period.

    Returns:
        200: Assignment in COMPLETED status
        409: Assignment already COMPLETED or CANCELLED
        412: Units still unread
    """
    assignment = CompletionGate(db, units, meters).complete_assignment(
        assignment_id, actor_id=actor_id
    )
    return AssignmentResponse.model_validate(assignment)
