"""Pydantic schemas for reading cycle and assignment endpoints."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from meter_cycles.models.reading_assignment import AssignmentStatus
from meter_cycles.models.reading_cycle import CycleStatus

# === Reading cycles ===


class CycleCreatePayload(BaseModel):
    """Request payload for POST /api/reading-cycles."""

    name: str = Field(..., description="Cycle name, unique per service")
    service_id: str = Field(..., description="WATER or ELECTRIC")
    period_from: date = Field(..., description="First day of the period (inclusive)")
    period_to: date = Field(..., description="Last day of the period (inclusive)")
    description: str | None = Field(None, description="Optional notes")


class CycleUpdatePayload(BaseModel):
    """Request payload for PUT /api/reading-cycles/{id}; omitted fields stay unchanged."""

    name: str | None = None
    period_from: date | None = None
    period_to: date | None = None
    description: str | None = None


class CycleResponse(BaseModel):
    """Reading cycle with its derived status."""

    id: int
    name: str
    service_id: str
    period_from: date
    period_to: date
    description: str | None = None
    status: CycleStatus
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


# === Assignments ===


class AssignmentCreatePayload(BaseModel):
    """Request payload for POST /api/meter-reading-assignments."""

    cycle_id: int
    building_id: str
    assigned_to: str = Field(..., description="Staff member performing the readings")
    start_date: date
    end_date: date
    floor_from: int | None = Field(None, description="First floor (inclusive); omit for all")
    floor_to: int | None = Field(None, description="Last floor (inclusive); omit for all")
    unit_ids: list[str] | None = Field(
        None, description="Restrict to these units of the building/floor scope"
    )
    note: str | None = None


class AssignmentResponse(BaseModel):
    """Assignment with its frozen unit set and derived status."""

    id: int
    cycle_id: int
    service_id: str
    building_id: str
    floor_from: int | None = None
    floor_to: int | None = None
    unit_ids: list[str]
    assigned_to: str
    assigned_by: str | None = None
    start_date: date
    end_date: date
    note: str | None = None
    status: AssignmentStatus
    overdue: bool = False
    created_at: datetime
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


# === Progress ===


class AssignmentProgressResponse(BaseModel):
    """Reading progress of one assignment."""

    assignment_id: int
    total_units: int
    readings_done: int
    remaining: int
    percent: int
    status: AssignmentStatus
    overdue: bool
    unread_unit_ids: list[str]

    model_config = ConfigDict(from_attributes=True)


class CycleProgressResponse(BaseModel):
    """Progress of a cycle plus whether it may be exported."""

    cycle_id: int
    status: CycleStatus
    assignments: list[AssignmentProgressResponse]
    total_unassigned: int
    all_complete: bool
    can_export: bool
    export_rule: str
    blocking_reasons: list[str] = Field(default_factory=list)


# === Unassigned units ===


class UnassignedFloorResponse(BaseModel):
    building_id: str
    building_code: str | None = None
    building_name: str | None = None
    floor: int | None = None
    unit_codes: list[str]

    model_config = ConfigDict(from_attributes=True)


class MissingMeterUnitResponse(BaseModel):
    unit_id: str
    unit_code: str
    floor: int | None = None
    building_id: str

    model_config = ConfigDict(from_attributes=True)


class CycleUnassignedResponse(BaseModel):
    """Billable units not covered by any active assignment of the cycle."""

    cycle_id: int
    service_id: str
    total_unassigned: int
    floors: list[UnassignedFloorResponse]
    missing_meter_units: list[MissingMeterUnitResponse]
    message: str
    only_with_owner: bool = True

    model_config = ConfigDict(from_attributes=True)


# === Export ===


class ExportSummaryResponse(BaseModel):
    """Counts reported by the invoice service."""

    cycle_id: int
    total_readings: int
    invoices_created: int
    invoices_skipped: int
    invoice_ids: list[str]
    errors: list[str]
    message: str | None = None
