"""Meter reading assignment model - a frozen slice of a cycle's units bound to one staff member."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from meter_cycles.models import Base, BaseModel


class AssignmentStatus(str, Enum):
    """Status of a meter reading assignment.

    Only PENDING, COMPLETED and CANCELLED are stored. IN_PROGRESS follows from
    the start date and OVERDUE is an advisory display value.
    """

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    OVERDUE = "OVERDUE"


OPEN_ASSIGNMENT_STATUSES = frozenset({AssignmentStatus.PENDING, AssignmentStatus.IN_PROGRESS})
TERMINAL_ASSIGNMENT_STATUSES = frozenset({AssignmentStatus.COMPLETED, AssignmentStatus.CANCELLED})


class MeterReadingAssignment(Base, BaseModel):
    """Assignment of a building (optionally a floor range) to a field staff member.

    Attributes:
        cycle_id: Owning reading cycle
        service_id: Service copied from the cycle at creation
        building_id: Building identifier in the unit directory
        floor_from: First floor covered (inclusive), None for all floors
        floor_to: Last floor covered (inclusive), None for all floors
        unit_ids: Unit identifiers resolved once at creation and never recomputed
        assigned_to: Staff identifier performing the readings
        start_date: First day readings are expected
        end_date: Deadline; passing it without completion marks the assignment overdue
    """

    __tablename__ = "meter_reading_assignments"

    cycle_id: Mapped[int] = mapped_column(
        ForeignKey("reading_cycles.id"), nullable=False, index=True
    )
    service_id: Mapped[str] = mapped_column(String(50), nullable=False)
    building_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    floor_from: Mapped[int | None] = mapped_column(Integer, nullable=True)
    floor_to: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unit_ids: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    assigned_to: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    assigned_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    note: Mapped[str | None] = mapped_column(Text(), nullable=True)

    stored_status: Mapped[AssignmentStatus] = mapped_column(
        "status",
        SQLEnum(AssignmentStatus),
        nullable=False,
        default=AssignmentStatus.PENDING,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    cycle: Mapped["ReadingCycle"] = relationship(  # noqa: F821
        "ReadingCycle", back_populates="assignments"
    )

    def status_on(self, today: date) -> AssignmentStatus:
        """Lifecycle status as of the given day (never OVERDUE)."""
        if self.stored_status in TERMINAL_ASSIGNMENT_STATUSES:
            return self.stored_status
        if today >= self.start_date:
            return AssignmentStatus.IN_PROGRESS
        return AssignmentStatus.PENDING

    def is_overdue_on(self, today: date) -> bool:
        """Advisory: the deadline passed while the assignment is still open."""
        return self.stored_status not in TERMINAL_ASSIGNMENT_STATUSES and today > self.end_date

    def display_status_on(self, today: date) -> AssignmentStatus:
        if self.is_overdue_on(today):
            return AssignmentStatus.OVERDUE
        return self.status_on(today)

    @property
    def status(self) -> AssignmentStatus:
        return self.status_on(date.today())

    @property
    def overdue(self) -> bool:
        return self.is_overdue_on(date.today())

    @property
    def is_active(self) -> bool:
        """Active assignments (anything but CANCELLED) own their units exclusively."""
        return self.stored_status != AssignmentStatus.CANCELLED

    def __repr__(self) -> str:
        return (
            f"<MeterReadingAssignment(id={self.id}, cycle_id={self.cycle_id}, "
            f"building={self.building_id}, units={len(self.unit_ids or [])}, "
            f"status={self.stored_status})>"
        )


__all__ = [
    "MeterReadingAssignment",
    "AssignmentStatus",
    "OPEN_ASSIGNMENT_STATUSES",
    "TERMINAL_ASSIGNMENT_STATUSES",
]
