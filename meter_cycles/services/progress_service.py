"""Progress aggregation for assignments and cycles, recomputed from the meter registry on every call.

A unit counts as read for a cycle when one of its meters for the cycle's
service has a reading dated inside [period_from, period_to], inclusive. The
reading can come from the registry's reading list or from the meter's
last_reading_date. Readings outside the window never count, so a reading
taken for the next cycle cannot complete this one.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from sqlalchemy.orm import Session

from meter_cycles.models.reading_assignment import AssignmentStatus, MeterReadingAssignment
from meter_cycles.models.reading_cycle import CycleStatus, ReadingCycle
from meter_cycles.services.assignment_service import AssignmentService
from meter_cycles.services.locks import CycleLockRegistry
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.unit_directory import UnitDirectoryClient

logger = logging.getLogger(__name__)


@dataclass
class AssignmentProgress:
    """Reading progress of one assignment."""

    assignment_id: int
    total_units: int
    readings_done: int
    remaining: int
    percent: int
    status: AssignmentStatus
    overdue: bool = False
    unread_unit_ids: list[str] = field(default_factory=list)


@dataclass
class CycleProgress:
    """Reading progress of every active assignment of a cycle."""

    cycle_id: int
    status: CycleStatus
    assignments: list[AssignmentProgress]
    total_unassigned: int
    all_complete: bool


def completion_percent(done: int, total: int) -> int:
    """Whole percent, rounded half up; an empty unit set reads as 100."""
    if total == 0:
        return 100
    ratio = Decimal(done) * 100 / Decimal(total)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def in_period(day: date | None, cycle: ReadingCycle) -> bool:
    """Check a reading date falls inside the cycle period (inclusive)."""
    return day is not None and cycle.period_from <= day <= cycle.period_to


class ProgressService:
    """Computes assignment and cycle progress. Nothing is cached between calls."""

    def __init__(
        self,
        db: Session,
        units: UnitDirectoryClient,
        meters: MeterRegistryClient,
        locks: CycleLockRegistry | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.meters = meters
        self.assignments = AssignmentService(db, units, meters, locks)
        self.today = today

    def read_unit_ids(self, cycle: ReadingCycle, building_id: str) -> set[str]:
        """Units of a building with at least one qualifying reading for the cycle."""
        if cycle.period_from > cycle.period_to:
            logger.warning(
                "Cycle %d has an inverted period %s to %s; no reading can qualify",
                cycle.id,
                cycle.period_from,
                cycle.period_to,
            )
            return set()

        meters = self.meters.list_meters(building_id, cycle.service_id)
        unit_by_meter = {meter.id: meter.unit_id for meter in meters}
        read = {meter.unit_id for meter in meters if in_period(meter.last_reading_date, cycle)}

        for reading in self.meters.list_readings(
            building_id, cycle.service_id, cycle.period_from, cycle.period_to
        ):
            unit_id = unit_by_meter.get(reading.meter_id)
            if unit_id is not None and in_period(reading.reading_date, cycle):
                read.add(unit_id)
        return read

    def _progress_for(
        self,
        assignment: MeterReadingAssignment,
        cycle: ReadingCycle,
        read_cache: dict[str, set[str]],
    ) -> AssignmentProgress:
        if assignment.building_id not in read_cache:
            read_cache[assignment.building_id] = self.read_unit_ids(cycle, assignment.building_id)
        read = read_cache[assignment.building_id]

        unit_ids = list(assignment.unit_ids or [])
        unread = [unit_id for unit_id in unit_ids if unit_id not in read]
        total = len(unit_ids)
        done = total - len(unread)
        today = self.today()
        return AssignmentProgress(
            assignment_id=assignment.id,
            total_units=total,
            readings_done=done,
            remaining=len(unread),
            percent=completion_percent(done, total),
            status=assignment.status_on(today),
            overdue=assignment.is_overdue_on(today),
            unread_unit_ids=unread,
        )

    def assignment_progress(self, assignment_id: int) -> AssignmentProgress:
        """Progress of one assignment against its frozen unit set.

        Raises:
            NotFoundError: Unknown assignment
            UpstreamUnavailableError: Meter registry unreachable
        """
        assignment = self.assignments.get(assignment_id)
        progress = self._progress_for(assignment, assignment.cycle, {})
        logger.debug(
            "Assignment %d progress: %d/%d (%d%%)",
            assignment_id,
            progress.readings_done,
            progress.total_units,
            progress.percent,
        )
        return progress

    def cycle_progress(self, cycle_id: int) -> CycleProgress:
        """Progress of every active assignment plus the unassigned-unit signal.

        ``all_complete`` holds iff every active assignment has nothing left to
        read and no billable unit is left unassigned.
        """
        cycle = self.assignments.cycles.get(cycle_id)
        read_cache: dict[str, set[str]] = {}
        progress = [
            self._progress_for(assignment, cycle, read_cache)
            for assignment in cycle.assignments
            if assignment.is_active
        ]
        unassigned = self.assignments.compute_unassigned(cycle_id)
        all_complete = (
            all(item.remaining == 0 for item in progress) and unassigned.total_unassigned == 0
        )
        return CycleProgress(
            cycle_id=cycle.id,
            status=cycle.status,
            assignments=progress,
            total_unassigned=unassigned.total_unassigned,
            all_complete=all_complete,
        )


__all__ = [
    "ProgressService",
    "AssignmentProgress",
    "CycleProgress",
    "completion_percent",
    "in_period",
]
