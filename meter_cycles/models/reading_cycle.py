"""Reading cycle ORM model: a billing period during which every meter is read once."""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, String, Text
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from meter_cycles.models import Base, BaseModel


class CycleStatus(str, Enum):
    """Status of a reading cycle.

    IN_PROGRESS is never stored; it is derived from assignment existence.
    """

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


ACTIVE_CYCLE_STATUSES = frozenset({CycleStatus.OPEN, CycleStatus.IN_PROGRESS})
TERMINAL_CYCLE_STATUSES = frozenset({CycleStatus.COMPLETED, CycleStatus.CANCELLED})


class ReadingCycle(Base, BaseModel):
    """Model representing a water or electricity reading cycle.

    The persisted lifecycle column only ever holds OPEN, COMPLETED or CANCELLED.
    The public ``status`` reports IN_PROGRESS for an OPEN cycle that has at least
    one assignment, cancelled ones included, so the status never moves backwards.
    """

    __tablename__ = "reading_cycles"

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Cycle name, unique per service case-insensitively (e.g. 'Jan-2025-Water')",
    )
    service_id: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Metered service this cycle reads (WATER, ELECTRIC)",
    )
    period_from: Mapped[date] = mapped_column(Date, nullable=False)
    period_to: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    stored_status: Mapped[CycleStatus] = mapped_column(
        "status",
        SQLEnum(CycleStatus),
        nullable=False,
        default=CycleStatus.OPEN,
        comment="Persisted lifecycle status (OPEN, COMPLETED, CANCELLED)",
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    assignments: Mapped[list["MeterReadingAssignment"]] = relationship(  # noqa: F821
        "MeterReadingAssignment",
        back_populates="cycle",
        order_by="MeterReadingAssignment.id",
    )

    @property
    def status(self) -> CycleStatus:
        """Public status, with IN_PROGRESS derived from assignment existence."""
        if self.stored_status == CycleStatus.OPEN and self.assignments:
            return CycleStatus.IN_PROGRESS
        return self.stored_status

    @property
    def normalized_name(self) -> str:
        return normalize_cycle_name(self.name)

    def __repr__(self) -> str:
        return f"<ReadingCycle(id={self.id}, name={self.name}, status={self.status})>"


def normalize_cycle_name(name: str) -> str:
    """Key used for the case-insensitive name uniqueness check."""
    return name.strip().casefold()


__all__ = [
    "ReadingCycle",
    "CycleStatus",
    "ACTIVE_CYCLE_STATUSES",
    "TERMINAL_CYCLE_STATUSES",
    "normalize_cycle_name",
]
