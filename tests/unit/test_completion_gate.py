"""Unit tests for the completion gate."""

from datetime import date

import pytest

from meter_cycles.models import AssignmentStatus, AuditLog, CycleStatus
from meter_cycles.services.completion_gate import (
    EXPORT_WHEN_FINALIZED_OR_ELIGIBLE,
    CompletionGate,
)
from meter_cycles.services.cycle_service import ReadingCycleService
from meter_cycles.services.errors import InvalidStateError, PreconditionFailedError

ALL_UNITS = ("U-101", "U-102", "U-201", "U-202")


@pytest.fixture
def gate(db_session, unit_directory, meter_registry, today):
    return CompletionGate(db_session, unit_directory, meter_registry, today=today)


def assign(gate, cycle_id, staff="alice", **kwargs):
    return gate.assignments.create_assignment(
        cycle_id, "B1", staff, date(2025, 1, 10), date(2025, 1, 20), **kwargs
    )


def read(meter_registry, *unit_ids, day=date(2025, 1, 14)):
    for unit_id in unit_ids:
        meter_registry.record_reading("B1", unit_id, day)


class TestCompleteAssignment:
    """Tests for assignment completion."""

    def test_unread_units_block_completion(self, gate, make_cycle, meter_registry):
        cycle = make_cycle()
        assignment = assign(gate, cycle.id)
        read(meter_registry, "U-101")

        assert not gate.can_complete_assignment(assignment.id)
        with pytest.raises(PreconditionFailedError) as exc_info:
            gate.complete_assignment(assignment.id)

        assert exc_info.value.details["remaining"] == 3
        assert gate.assignments.get(assignment.id).stored_status == AssignmentStatus.PENDING

    def test_complete_once_then_invalid_state(self, gate, make_cycle, meter_registry, db_session):
        """The second completion of the same assignment fails."""
        cycle = make_cycle()
        assignment = assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)

        assert gate.can_complete_assignment(assignment.id)
        completed = gate.complete_assignment(assignment.id, actor_id="alice")

        assert completed.stored_status == AssignmentStatus.COMPLETED
        assert completed.completed_at is not None
        assert not gate.can_complete_assignment(assignment.id)
        with pytest.raises(InvalidStateError):
            gate.complete_assignment(assignment.id)
        assert (
            db_session.query(AuditLog)
            .filter_by(entity_type="assignment", entity_id=assignment.id, action="complete")
            .count()
            == 1
        )

    def test_cancelled_assignment_cannot_complete(self, gate, make_cycle, meter_registry):
        cycle = make_cycle()
        assignment = assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)
        gate.assignments.cancel_assignment(assignment.id)

        assert not gate.can_complete_assignment(assignment.id)
        with pytest.raises(InvalidStateError):
            gate.complete_assignment(assignment.id)

    def test_completed_assignment_survives_cycle_cancel(
        self, gate, make_cycle, meter_registry, db_session
    ):
        cycle = make_cycle()
        done = assign(gate, cycle.id, floor_from=1, floor_to=1)
        open_one = assign(gate, cycle.id, staff="bob", floor_from=2, floor_to=2)
        read(meter_registry, "U-101", "U-102")
        gate.complete_assignment(done.id)

        ReadingCycleService(db_session).cancel(cycle.id)

        assert gate.assignments.get(done.id).stored_status == AssignmentStatus.COMPLETED
        assert gate.assignments.get(open_one.id).stored_status == AssignmentStatus.CANCELLED


class TestCompleteCycle:
    """Tests for cycle completion."""

    def test_unassigned_units_block_cycle(self, gate, make_cycle, meter_registry):
        cycle = make_cycle()
        assign(gate, cycle.id, floor_from=1, floor_to=1)
        read(meter_registry, "U-101", "U-102")

        assert not gate.can_complete_cycle(cycle.id)
        with pytest.raises(PreconditionFailedError, match="2 billable units are not assigned"):
            gate.complete_cycle(cycle.id)

    def test_complete_cycle_closes_open_assignments(self, gate, make_cycle, meter_registry):
        cycle = make_cycle()
        assignment = assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)

        assert gate.can_complete_cycle(cycle.id)
        completed = gate.complete_cycle(cycle.id, actor_id="admin")

        assert completed.status == CycleStatus.COMPLETED
        assert completed.completed_at is not None
        assert gate.assignments.get(assignment.id).stored_status == AssignmentStatus.COMPLETED

    def test_completed_cycle_is_terminal(self, gate, make_cycle, meter_registry, db_session):
        cycle = make_cycle()
        assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)
        gate.complete_cycle(cycle.id)

        assert not gate.can_complete_cycle(cycle.id)
        with pytest.raises(InvalidStateError):
            gate.complete_cycle(cycle.id)
        with pytest.raises(InvalidStateError):
            ReadingCycleService(db_session).cancel(cycle.id)
        with pytest.raises(InvalidStateError):
            assign(gate, cycle.id, staff="bob")

    def test_cancelled_cycle_cannot_complete(self, gate, make_cycle, db_session):
        cycle = make_cycle()
        ReadingCycleService(db_session).cancel(cycle.id)

        with pytest.raises(InvalidStateError):
            gate.complete_cycle(cycle.id)


class TestCanExport:
    """Tests for EXPORT_WHEN_FINALIZED_OR_ELIGIBLE."""

    def test_eligible_cycle_exports_without_completing(self, gate, make_cycle, meter_registry):
        cycle = make_cycle()
        assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)

        eligibility = gate.export_eligibility(cycle.id)

        assert gate.can_export(cycle.id)
        assert eligibility.can_export
        assert eligibility.rule == EXPORT_WHEN_FINALIZED_OR_ELIGIBLE
        assert eligibility.status == CycleStatus.IN_PROGRESS

    def test_completed_cycle_exports(self, gate, make_cycle, meter_registry, unit_directory):
        """Once COMPLETED, later directory changes no longer block export."""
        cycle = make_cycle()
        assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)
        gate.complete_cycle(cycle.id)
        unit_directory.add_unit("B1", "U-301", 3)

        assert gate.can_export(cycle.id)
        assert gate.export_eligibility(cycle.id).reasons == []

    def test_unassigned_units_block_export_even_when_assignments_done(
        self, gate, make_cycle, meter_registry
    ):
        cycle = make_cycle()
        done = assign(gate, cycle.id, floor_from=1, floor_to=1)
        read(meter_registry, "U-101", "U-102")
        gate.complete_assignment(done.id)

        eligibility = gate.export_eligibility(cycle.id)

        assert not gate.can_export(cycle.id)
        assert eligibility.reasons == ["2 billable units are not assigned"]

    def test_unread_units_listed_as_reasons(self, gate, make_cycle, meter_registry):
        cycle = make_cycle()
        assignment = assign(gate, cycle.id)
        read(meter_registry, "U-101")

        reasons = gate.export_eligibility(cycle.id).reasons

        assert reasons == [
            f"Assignment {assignment.id} has 3 of 4 units without a reading in the cycle period"
        ]

    def test_cancelled_cycle_never_exports(self, gate, make_cycle, db_session):
        cycle = make_cycle()
        ReadingCycleService(db_session).cancel(cycle.id)

        assert not gate.can_export(cycle.id)
        assert gate.export_eligibility(cycle.id).reasons == ["Cycle is CANCELLED"]

    def test_eligibility_from_given_progress(self, gate, make_cycle, meter_registry):
        """A progress snapshot is reused instead of asking the registry again."""
        cycle = make_cycle()
        assign(gate, cycle.id)
        read(meter_registry, *ALL_UNITS)
        progress = gate.progress.cycle_progress(cycle.id)
        meter_registry.unavailable = True

        eligibility = gate.export_eligibility(cycle.id, progress)

        assert eligibility.can_export
        assert eligibility.reasons == []
