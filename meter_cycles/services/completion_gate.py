"""Completion gate: decides whether assignments and cycles may complete and cycles may be exported.

All externally irreversible transitions pass through here. Every mutation
re-checks its condition while holding the cycle lock; callers never get to
say "I already checked".

Export rule EXPORT_WHEN_FINALIZED_OR_ELIGIBLE: a cycle may be exported when it
is COMPLETED, or when it could be completed right now. Exporting does not
require the explicit complete step.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from meter_cycles.models.reading_assignment import (
    OPEN_ASSIGNMENT_STATUSES,
    TERMINAL_ASSIGNMENT_STATUSES,
    AssignmentStatus,
    MeterReadingAssignment,
)
from meter_cycles.models.reading_cycle import ACTIVE_CYCLE_STATUSES, CycleStatus, ReadingCycle
from meter_cycles.services.audit_service import AuditService
from meter_cycles.services.errors import InvalidStateError, PreconditionFailedError
from meter_cycles.services.locks import CycleLockRegistry, locked_cycle
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.progress_service import CycleProgress, ProgressService
from meter_cycles.services.unit_directory import UnitDirectoryClient

logger = logging.getLogger(__name__)

EXPORT_WHEN_FINALIZED_OR_ELIGIBLE = "EXPORT_WHEN_FINALIZED_OR_ELIGIBLE"


@dataclass
class ExportEligibility:
    """Whether a cycle may be exported, and what blocks it if not."""

    cycle_id: int
    status: CycleStatus
    can_export: bool
    rule: str = EXPORT_WHEN_FINALIZED_OR_ELIGIBLE
    reasons: list[str] = field(default_factory=list)


def blocking_reasons(progress: CycleProgress) -> list[str]:
    """Human-readable reasons a cycle is not complete yet."""
    reasons = [
        f"Assignment {item.assignment_id} has {item.remaining} of {item.total_units} "
        "units without a reading in the cycle period"
        for item in progress.assignments
        if item.remaining > 0
    ]
    if progress.total_unassigned > 0:
        reasons.append(f"{progress.total_unassigned} billable units are not assigned")
    return reasons


class CompletionGate:
    """Invariant-checking layer in front of completion and export."""

    def __init__(
        self,
        db: Session,
        units: UnitDirectoryClient,
        meters: MeterRegistryClient,
        locks: CycleLockRegistry | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.locks = locks
        self.progress = ProgressService(db, units, meters, locks, today)
        self.assignments = self.progress.assignments
        self.cycles = self.assignments.cycles

    # === Assignments ===

    def can_complete_assignment(self, assignment_id: int) -> bool:
        """True iff the assignment is still open and every unit has been read."""
        assignment = self.assignments.get(assignment_id)
        if assignment.stored_status in TERMINAL_ASSIGNMENT_STATUSES:
            return False
        return self.progress.assignment_progress(assignment_id).remaining == 0

    def complete_assignment(
        self, assignment_id: int, actor_id: str | None = None
    ) -> MeterReadingAssignment:
        """Mark an assignment COMPLETED once all of its units are read.

        Raises:
            NotFoundError: Unknown assignment
            InvalidStateError: Already COMPLETED or CANCELLED (a repeated call lands here)
            PreconditionFailedError: Units still unread
        """
        cycle_id = self.assignments.get(assignment_id).cycle_id
        with locked_cycle(self.db, cycle_id, self.locks):
            assignment = self.assignments.get(assignment_id)
            self.db.refresh(assignment)
            if assignment.stored_status in TERMINAL_ASSIGNMENT_STATUSES:
                logger.warning(
                    "Rejected completion of assignment %d: already %s",
                    assignment_id,
                    assignment.stored_status.value,
                )
                raise InvalidStateError(
                    f"Assignment {assignment_id} is already {assignment.stored_status.value}",
                    {"assignment_id": assignment_id, "status": assignment.stored_status.value},
                )

            progress = self.progress.assignment_progress(assignment_id)
            if progress.remaining > 0:
                logger.warning(
                    "Rejected completion of assignment %d: %d of %d units unread",
                    assignment_id,
                    progress.remaining,
                    progress.total_units,
                )
                raise PreconditionFailedError(
                    f"Assignment {assignment_id} has {progress.remaining} of "
                    f"{progress.total_units} units without a reading in the cycle period",
                    {
                        "assignment_id": assignment_id,
                        "remaining": progress.remaining,
                        "unread_unit_ids": progress.unread_unit_ids,
                    },
                )

            assignment.stored_status = AssignmentStatus.COMPLETED
            assignment.completed_at = datetime.now(timezone.utc)
            AuditService.log(
                self.db,
                "assignment",
                assignment.id,
                "complete",
                actor_id,
                {"readings_done": progress.readings_done},
            )
            self.db.commit()

        logger.info("Completed assignment %d of cycle %d", assignment_id, cycle_id)
        return assignment

    # === Cycles ===

    def can_complete_cycle(self, cycle_id: int) -> bool:
        """True iff the cycle is OPEN/IN_PROGRESS and its progress is all complete."""
        cycle = self.cycles.get(cycle_id)
        if cycle.status not in ACTIVE_CYCLE_STATUSES:
            return False
        return self.progress.cycle_progress(cycle_id).all_complete

    def complete_cycle(self, cycle_id: int, actor_id: str | None = None) -> ReadingCycle:
        """Finalize a cycle. Open assignments, all fully read by then, complete with it.

        Raises:
            NotFoundError: Unknown cycle
            InvalidStateError: Cycle already COMPLETED or CANCELLED
            PreconditionFailedError: Unread units or unassigned units remain
        """
        with locked_cycle(self.db, cycle_id, self.locks) as cycle:
            current = cycle.status
            if current not in ACTIVE_CYCLE_STATUSES:
                raise InvalidStateError(
                    f"Cycle {cycle_id} is already {current.value}",
                    {"cycle_id": cycle_id, "status": current.value},
                )

            progress = self.progress.cycle_progress(cycle_id)
            if not progress.all_complete:
                reasons = blocking_reasons(progress)
                logger.warning("Rejected completion of cycle %d: %s", cycle_id, "; ".join(reasons))
                raise PreconditionFailedError(
                    f"Cycle {cycle_id} cannot be completed: " + "; ".join(reasons),
                    {"cycle_id": cycle_id, "reasons": reasons},
                )

            now = datetime.now(timezone.utc)
            closed = []
            for assignment in cycle.assignments:
                if assignment.stored_status in OPEN_ASSIGNMENT_STATUSES:
                    assignment.stored_status = AssignmentStatus.COMPLETED
                    assignment.completed_at = now
                    closed.append(assignment.id)

            cycle.stored_status = CycleStatus.COMPLETED
            cycle.completed_at = now
            AuditService.log(
                self.db,
                "cycle",
                cycle.id,
                "complete",
                actor_id,
                {"status": CycleStatus.COMPLETED.value, "completed_assignments": closed},
            )
            self.db.commit()

        logger.info(
            "Completed reading cycle %d (was %s); closed %d open assignments",
            cycle_id,
            current.value,
            len(closed),
        )
        return cycle

    def can_export(self, cycle_id: int) -> bool:
        """EXPORT_WHEN_FINALIZED_OR_ELIGIBLE: COMPLETED, or completable right now."""
        cycle = self.cycles.get(cycle_id)
        if cycle.status == CycleStatus.COMPLETED:
            return True
        return self.can_complete_cycle(cycle_id)

    def export_eligibility(
        self, cycle_id: int, progress: CycleProgress | None = None
    ) -> ExportEligibility:
        """Same decision as can_export, with the reasons that block it.

        Pass a ``progress`` already computed for the cycle to decide from that
        snapshot instead of sweeping the upstream services again.
        """
        cycle = self.cycles.get(cycle_id)
        status = cycle.status
        if status == CycleStatus.COMPLETED:
            return ExportEligibility(cycle_id, status, True)
        if status not in ACTIVE_CYCLE_STATUSES:
            return ExportEligibility(cycle_id, status, False, reasons=[f"Cycle is {status.value}"])

        if progress is None:
            progress = self.progress.cycle_progress(cycle_id)
        reasons = blocking_reasons(progress)
        return ExportEligibility(cycle_id, status, not reasons, reasons=reasons)


__all__ = [
    "CompletionGate",
    "ExportEligibility",
    "EXPORT_WHEN_FINALIZED_OR_ELIGIBLE",
    "blocking_reasons",
]
