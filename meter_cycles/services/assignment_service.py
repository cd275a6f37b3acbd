"""Assignment partitioner: splits a cycle's billable units into disjoint staff assignments."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from meter_cycles.models.reading_assignment import (
    OPEN_ASSIGNMENT_STATUSES,
    AssignmentStatus,
    MeterReadingAssignment,
)
from meter_cycles.models.reading_cycle import ACTIVE_CYCLE_STATUSES
from meter_cycles.services.audit_service import AuditService
from meter_cycles.services.cycle_service import ReadingCycleService
from meter_cycles.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from meter_cycles.services.locks import CycleLockRegistry, locked_cycle
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.unit_directory import Unit, UnitDirectoryClient

logger = logging.getLogger(__name__)


@dataclass
class UnassignedFloor:
    """Unassigned unit codes of one floor of one building."""

    building_id: str
    building_code: str | None
    building_name: str | None
    floor: int | None
    unit_codes: list[str]


@dataclass
class MissingMeterUnit:
    """Billable unit with no active meter for the cycle's service."""

    unit_id: str
    unit_code: str
    floor: int | None
    building_id: str


@dataclass
class CycleUnassignedInfo:
    """Billable units of a cycle's scope not covered by any active assignment."""

    cycle_id: int
    service_id: str
    total_unassigned: int
    floors: list[UnassignedFloor] = field(default_factory=list)
    missing_meter_units: list[MissingMeterUnit] = field(default_factory=list)
    message: str = ""
    only_with_owner: bool = True


def format_unit_list(codes: list[str], qualifier: str) -> str:
    """Format '3 units already assigned: U-101, U-102, U-204' style listings."""
    noun = "unit" if len(codes) == 1 else "units"
    return f"{len(codes)} {noun} {qualifier}: {', '.join(codes)}"


class AssignmentService:
    """Service for meter reading assignment operations.

    Resolves unit sets from the unit directory once, at creation, and keeps
    active assignments of a cycle pairwise disjoint.
    """

    def __init__(
        self,
        db: Session,
        units: UnitDirectoryClient,
        meters: MeterRegistryClient,
        locks: CycleLockRegistry | None = None,
    ):
        """Initialize with database session and upstream clients."""
        self.db = db
        self.units = units
        self.meters = meters
        self.locks = locks
        self.cycles = ReadingCycleService(db, locks)

    def get(self, assignment_id: int) -> MeterReadingAssignment:
        """Get assignment by ID.

        Raises:
            NotFoundError: If the assignment does not exist
        """
        assignment = (
            self.db.query(MeterReadingAssignment)
            .filter(MeterReadingAssignment.id == assignment_id)
            .first()
        )
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id)
        return assignment

    def list_by_cycle(
        self, cycle_id: int, include_cancelled: bool = True
    ) -> list[MeterReadingAssignment]:
        """List assignments of a cycle in creation order."""
        self.cycles.get(cycle_id)
        query = self.db.query(MeterReadingAssignment).filter(
            MeterReadingAssignment.cycle_id == cycle_id
        )
        if not include_cancelled:
            query = query.filter(
                MeterReadingAssignment.stored_status != AssignmentStatus.CANCELLED
            )
        return query.order_by(MeterReadingAssignment.id.asc()).all()

    def list_by_staff(
        self, assigned_to: str, active_only: bool = False
    ) -> list[MeterReadingAssignment]:
        """List a staff member's assignments, optionally only those still open."""
        query = self.db.query(MeterReadingAssignment).filter(
            MeterReadingAssignment.assigned_to == assigned_to
        )
        if active_only:
            query = query.filter(
                MeterReadingAssignment.stored_status.in_(list(OPEN_ASSIGNMENT_STATUSES))
            )
        return query.order_by(
            MeterReadingAssignment.start_date.asc(), MeterReadingAssignment.id.asc()
        ).all()

    def resolve_units(
        self,
        building_id: str,
        floor_from: int | None = None,
        floor_to: int | None = None,
        unit_ids: list[str] | None = None,
    ) -> list[Unit]:
        """Resolve the billable units an assignment would cover.

        Args:
            building_id: Building in the unit directory
            floor_from: First floor (inclusive), None for no lower bound
            floor_to: Last floor (inclusive), None for no upper bound
            unit_ids: Optional explicit selection inside the building/floor scope

        Returns:
            Billable units ordered by floor then code

        Raises:
            ValidationError: Selected units outside the scope, or nothing left to read
        """
        scope = [
            unit
            for unit in self.units.list_units(building_id)
            if unit.is_billable() and unit.on_floors(floor_from, floor_to)
        ]

        if unit_ids:
            requested = {str(uid) for uid in unit_ids}
            known = {unit.id for unit in scope}
            outside = sorted(requested - known)
            if outside:
                raise ValidationError(
                    format_unit_list(
                        outside, f"outside the billable scope of building {building_id}"
                    ),
                    {"unit_ids": outside},
                )
            scope = [unit for unit in scope if unit.id in requested]

        if not scope:
            floors = ""
            if floor_from is not None or floor_to is not None:
                floors = f" on floors {floor_from}..{floor_to}"
            raise ValidationError(
                f"No billable units found in building {building_id}{floors}",
                {"building_id": building_id, "floor_from": floor_from, "floor_to": floor_to},
            )
        return sorted(scope, key=lambda u: (u.floor if u.floor is not None else -1, u.code))

    def create_assignment(
        self,
        cycle_id: int,
        building_id: str,
        assigned_to: str,
        start_date: date,
        end_date: date,
        floor_from: int | None = None,
        floor_to: int | None = None,
        unit_ids: list[str] | None = None,
        note: str | None = None,
        assigned_by: str | None = None,
    ) -> MeterReadingAssignment:
        """Bind a building (or floor range, or unit selection) of a cycle to a staff member.

        Returns:
            Created MeterReadingAssignment with its unit set frozen

        Raises:
            NotFoundError: Unknown cycle or building
            InvalidStateError: Cycle is COMPLETED or CANCELLED
            ValidationError: Bad dates/floors/staff, or empty resolved unit set
            ConflictError: Resolved units already covered by an active assignment
        """
        if not building_id or not str(building_id).strip():
            raise ValidationError("Building is required")
        if not assigned_to or not assigned_to.strip():
            raise ValidationError("Assignment must be bound to a staff member")
        if start_date > end_date:
            raise ValidationError(
                f"start_date {start_date} cannot be after end_date {end_date}",
                {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
            )
        if floor_from is not None and floor_to is not None and floor_from > floor_to:
            raise ValidationError(
                f"floor_from {floor_from} cannot be above floor_to {floor_to}",
                {"floor_from": floor_from, "floor_to": floor_to},
            )

        # Fail fast on unknown cycles before calling the directory
        self.cycles.get(cycle_id)
        scope = self.resolve_units(building_id, floor_from, floor_to, unit_ids)

        with locked_cycle(self.db, cycle_id, self.locks) as cycle:
            if cycle.status not in ACTIVE_CYCLE_STATUSES:
                raise InvalidStateError(
                    f"Cycle {cycle_id} is {cycle.status.value}; assignments can only be added "
                    "to OPEN or IN_PROGRESS cycles",
                    {"cycle_id": cycle_id, "status": cycle.status.value},
                )

            owner_by_unit = {
                unit_id: existing.id
                for existing in cycle.assignments
                if existing.is_active
                for unit_id in existing.unit_ids
            }
            overlapping = [unit for unit in scope if unit.id in owner_by_unit]
            if overlapping:
                codes = [unit.code for unit in overlapping]
                logger.warning(
                    "Rejected assignment for cycle %d building %s: %d units overlap",
                    cycle_id,
                    building_id,
                    len(overlapping),
                )
                raise ConflictError(
                    format_unit_list(codes, "already assigned"),
                    {
                        "unit_ids": [unit.id for unit in overlapping],
                        "unit_codes": codes,
                        "assignment_ids": sorted({owner_by_unit[u.id] for u in overlapping}),
                    },
                )

            assignment = MeterReadingAssignment(
                service_id=cycle.service_id,
                building_id=str(building_id),
                floor_from=floor_from,
                floor_to=floor_to,
                unit_ids=[unit.id for unit in scope],
                assigned_to=assigned_to.strip(),
                assigned_by=assigned_by,
                start_date=start_date,
                end_date=end_date,
                note=note,
                stored_status=AssignmentStatus.PENDING,
            )
            cycle.assignments.append(assignment)
            self.db.flush()

            AuditService.log(
                self.db,
                "assignment",
                assignment.id,
                "create",
                assigned_by,
                {
                    "cycle_id": cycle_id,
                    "building_id": str(building_id),
                    "assigned_to": assignment.assigned_to,
                    "unit_count": len(scope),
                },
            )
            self.db.commit()

        logger.info(
            "Created assignment %d: cycle=%d building=%s floors=%s..%s units=%d staff=%s",
            assignment.id,
            cycle_id,
            building_id,
            floor_from,
            floor_to,
            len(scope),
            assignment.assigned_to,
        )
        return assignment

    def cancel_assignment(
        self, assignment_id: int, actor_id: str | None = None
    ) -> MeterReadingAssignment:
        """Cancel an assignment that is still PENDING or IN_PROGRESS, releasing its units.

        Raises:
            NotFoundError: Unknown assignment
            InvalidStateError: Assignment already COMPLETED or CANCELLED
        """
        cycle_id = self.get(assignment_id).cycle_id
        with locked_cycle(self.db, cycle_id, self.locks):
            assignment = self.get(assignment_id)
            self.db.refresh(assignment)
            if assignment.stored_status not in OPEN_ASSIGNMENT_STATUSES:
                logger.warning(
                    "Rejected cancel of assignment %d in status %s",
                    assignment_id,
                    assignment.stored_status.value,
                )
                raise InvalidStateError(
                    f"Assignment {assignment_id} is {assignment.stored_status.value}; only "
                    "PENDING or IN_PROGRESS assignments can be cancelled",
                    {"assignment_id": assignment_id, "status": assignment.stored_status.value},
                )
            assignment.stored_status = AssignmentStatus.CANCELLED
            assignment.cancelled_at = datetime.now(timezone.utc)
            AuditService.log(
                self.db,
                "assignment",
                assignment.id,
                "cancel",
                actor_id,
                {"released_units": len(assignment.unit_ids)},
            )
            self.db.commit()

        logger.info("Cancelled assignment %d of cycle %d", assignment_id, cycle_id)
        return assignment

    def compute_unassigned(
        self, cycle_id: int, only_with_owner: bool = True
    ) -> CycleUnassignedInfo:
        """Set-subtract the active assignments' units from every billable unit in scope.

        A cycle's scope is every billable unit of every building in the unit
        directory; with ``only_with_owner`` (the default, and what the
        completion gate uses) vacant units without an owner or primary resident
        are left out. Units without an active meter for the cycle's service are
        reported separately; they cannot be read until a meter is installed.
        """
        cycle = self.cycles.get(cycle_id)
        assigned = {
            unit_id
            for assignment in cycle.assignments
            if assignment.is_active
            for unit_id in assignment.unit_ids
        }

        floors: list[UnassignedFloor] = []
        missing_meter_units: list[MissingMeterUnit] = []
        total = 0
        for building in self.units.list_buildings():
            billable = [
                u
                for u in self.units.list_units(building.id)
                if u.is_billable() and (u.has_owner or not only_with_owner)
            ]
            metered = {
                meter.unit_id
                for meter in self.meters.list_meters(building.id, cycle.service_id)
                if meter.active
            }

            by_floor: dict[int | None, list[str]] = defaultdict(list)
            for unit in billable:
                if unit.id not in assigned:
                    by_floor[unit.floor].append(unit.code)
                if unit.id not in metered:
                    missing_meter_units.append(
                        MissingMeterUnit(unit.id, unit.code, unit.floor, building.id)
                    )

            for floor in sorted(by_floor, key=lambda f: (f is None, f or 0)):
                codes = sorted(by_floor[floor])
                total += len(codes)
                floors.append(
                    UnassignedFloor(building.id, building.code, building.name, floor, codes)
                )

        if total == 0:
            message = "All billable units are assigned"
        else:
            lines = [
                f"Building {f.building_code or f.building_id}, floor "
                f"{f.floor if f.floor is not None else '-'}: {', '.join(f.unit_codes)}"
                for f in floors
            ]
            message = f"{total} units not assigned\n" + "\n".join(lines)
        if missing_meter_units:
            message += f"\n{len(missing_meter_units)} units have no {cycle.service_id} meter"

        return CycleUnassignedInfo(
            cycle_id=cycle.id,
            service_id=cycle.service_id,
            total_unassigned=total,
            floors=floors,
            missing_meter_units=missing_meter_units,
            message=message,
            only_with_owner=only_with_owner,
        )


__all__ = [
    "AssignmentService",
    "CycleUnassignedInfo",
    "UnassignedFloor",
    "MissingMeterUnit",
    "format_unit_list",
]
