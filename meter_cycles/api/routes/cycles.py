"""Reading cycle API routes."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from meter_cycles.api.dependencies import (
    get_actor_id,
    get_invoice_exporter,
    get_meter_registry,
    get_unit_directory,
)
from meter_cycles.api.schemas import (
    AssignmentProgressResponse,
    CycleCreatePayload,
    CycleProgressResponse,
    CycleResponse,
    CycleUnassignedResponse,
    CycleUpdatePayload,
    ExportSummaryResponse,
)
from meter_cycles.models.reading_cycle import CycleStatus
from meter_cycles.services import get_db
from meter_cycles.services.assignment_service import AssignmentService
from meter_cycles.services.completion_gate import CompletionGate
from meter_cycles.services.cycle_service import ReadingCycleService
from meter_cycles.services.export_service import ExportService
from meter_cycles.services.invoice_export import InvoiceExportClient
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.unit_directory import UnitDirectoryClient

router = APIRouter(prefix="/api/reading-cycles", tags=["reading-cycles"])


@router.post("", response_model=CycleResponse, status_code=status.HTTP_201_CREATED)
def create_cycle(
    payload: CycleCreatePayload,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
) -> CycleResponse:
    """
    Open a new reading cycle.

    Returns:
        201: Created cycle in OPEN status
        409: Name already used by another cycle of the service
        422: Blank name, unknown service or inverted period
    """
    cycle = ReadingCycleService(db).create(
        name=payload.name,
        service_id=payload.service_id,
        period_from=payload.period_from,
        period_to=payload.period_to,
        description=payload.description,
        created_by=actor_id,
    )
    return CycleResponse.model_validate(cycle)


@router.get("", response_model=list[CycleResponse])
def list_cycles(
    service_id: str | None = None,
    cycle_status: CycleStatus | None = Query(None, alias="status"),
    db: Session = Depends(get_db),
) -> list[CycleResponse]:
    """List cycles, most recent period first, optionally by service and status."""
    cycles = ReadingCycleService(db).list_all(service_id=service_id, status=cycle_status)
    return [CycleResponse.model_validate(c) for c in cycles]


@router.get("/period", response_model=list[CycleResponse])
def list_cycles_in_period(
    date_from: date = Query(..., alias="from"),
    date_to: date = Query(..., alias="to"),
    service_id: str | None = None,
    db: Session = Depends(get_db),
) -> list[CycleResponse]:
    """List cycles whose period overlaps [from, to]."""
    cycles = ReadingCycleService(db).list_by_period_overlap(date_from, date_to, service_id)
    return [CycleResponse.model_validate(c) for c in cycles]


@router.get("/{cycle_id}", response_model=CycleResponse)
def get_cycle(cycle_id: int, db: Session = Depends(get_db)) -> CycleResponse:
    return CycleResponse.model_validate(ReadingCycleService(db).get(cycle_id))


@router.put("/{cycle_id}", response_model=CycleResponse)
def update_cycle(
    cycle_id: int,
    payload: CycleUpdatePayload,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
) -> CycleResponse:
    """Edit name, period or description; the period order is not re-checked."""
    cycle = ReadingCycleService(db).update(
        cycle_id,
        name=payload.name,
        period_from=payload.period_from,
        period_to=payload.period_to,
        description=payload.description,
        actor_id=actor_id,
    )
    return CycleResponse.model_validate(cycle)


@router.delete("/{cycle_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_cycle(
    cycle_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
) -> None:
    """Soft-delete a cycle without assignments."""
    ReadingCycleService(db).delete(cycle_id, actor_id=actor_id)


@router.post("/{cycle_id}/cancel", response_model=CycleResponse)
def cancel_cycle(
    cycle_id: int,
    db: Session = Depends(get_db),
    actor_id: str | None = Depends(get_actor_id),
) -> CycleResponse:
    """Cancel a cycle and its open assignments."""
    cycle = ReadingCycleService(db).cancel(cycle_id, actor_id=actor_id)
    return CycleResponse.model_validate(cycle)


@router.post("/{cycle_id}/complete", response_model=CycleResponse)
def complete_cycle(
    cycle_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
    actor_id: str | None = Depends(get_actor_id),
) -> CycleResponse:
    """
    Complete a cycle.

    Returns:
        200: Cycle in COMPLETED status
        409: Cycle already COMPLETED or CANCELLED
        412: Unread or unassigned units remain
        503: Unit directory or meter registry unreachable
    """
    cycle = CompletionGate(db, units, meters).complete_cycle(cycle_id, actor_id=actor_id)
    return CycleResponse.model_validate(cycle)


@router.get("/{cycle_id}/progress", response_model=CycleProgressResponse)
def get_cycle_progress(
    cycle_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
) -> CycleProgressResponse:
    """Progress of every active assignment, with the export decision."""
    gate = CompletionGate(db, units, meters)
    progress = gate.progress.cycle_progress(cycle_id)
    eligibility = gate.export_eligibility(cycle_id, progress)
    return CycleProgressResponse(
        cycle_id=progress.cycle_id,
        status=progress.status,
        assignments=[AssignmentProgressResponse.model_validate(a) for a in progress.assignments],
        total_unassigned=progress.total_unassigned,
        all_complete=progress.all_complete,
        can_export=eligibility.can_export,
        export_rule=eligibility.rule,
        blocking_reasons=eligibility.reasons,
    )


@router.get("/{cycle_id}/unassigned", response_model=CycleUnassignedResponse)
def get_unassigned_units(
    cycle_id: int,
    only_with_owner: bool = Query(True, alias="onlyWithOwner"),
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
) -> CycleUnassignedResponse:
    """Billable units not yet covered by an active assignment.

    ``onlyWithOwner=false`` also lists vacant units, which never block completion.
    """
    info = AssignmentService(db, units, meters).compute_unassigned(cycle_id, only_with_owner)
    return CycleUnassignedResponse.model_validate(info)


@router.post("/{cycle_id}/export", response_model=ExportSummaryResponse)
def export_cycle(
    cycle_id: int,
    db: Session = Depends(get_db),
    units: UnitDirectoryClient = Depends(get_unit_directory),
    meters: MeterRegistryClient = Depends(get_meter_registry),
    exporter: InvoiceExportClient = Depends(get_invoice_exporter),
    actor_id: str | None = Depends(get_actor_id),
) -> ExportSummaryResponse:
    """
    Export a cycle's readings to the invoice service.

    Returns:
        200: Export summary
        412: Cycle neither COMPLETED nor completable
        502: Invoice service rejected the export
        503: An upstream service is unreachable
    """
    summary = ExportService(db, units, meters, exporter).export_cycle(cycle_id, actor_id=actor_id)
    return ExportSummaryResponse(
        cycle_id=cycle_id,
        total_readings=summary.total_readings,
        invoices_created=summary.invoices_created,
        invoices_skipped=summary.invoices_skipped,
        invoice_ids=summary.invoice_ids,
        errors=summary.errors,
        message=summary.message,
    )
