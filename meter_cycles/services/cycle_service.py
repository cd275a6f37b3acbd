"""Reading cycle store: creation, edits, cancellation and lookups of reading cycles."""

import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from meter_cycles.config import settings
from meter_cycles.models.reading_assignment import (
    OPEN_ASSIGNMENT_STATUSES,
    AssignmentStatus,
)
from meter_cycles.models.reading_cycle import (
    ACTIVE_CYCLE_STATUSES,
    CycleStatus,
    ReadingCycle,
    normalize_cycle_name,
)
from meter_cycles.services.audit_service import AuditService
from meter_cycles.services.errors import (
    DuplicateCycleNameError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from meter_cycles.services.locks import CycleLockRegistry, cycle_locks, locked_cycle

logger = logging.getLogger(__name__)


def normalize_service_id(service_id: str | None) -> str:
    """Validate and canonicalize a service id against the allowed services."""
    normalized = (service_id or "").strip().upper()
    if not normalized:
        raise ValidationError("Service is required")
    if normalized not in {s.upper() for s in settings.allowed_services}:
        raise ValidationError(
            f"Service {normalized} is not a metered service "
            f"(allowed: {', '.join(settings.allowed_services)})",
            {"service_id": normalized},
        )
    return normalized


class ReadingCycleService:
    """Service for reading cycle database operations.

    Owns cycle records and their status transitions. Completion goes through
    the CompletionGate; everything else lives here.
    """

    def __init__(self, db: Session, locks: CycleLockRegistry | None = None):
        """Initialize with database session."""
        self.db = db
        self.locks = locks

    @property
    def _registry(self) -> CycleLockRegistry:
        return self.locks or cycle_locks

    def get(self, cycle_id: int) -> ReadingCycle:
        """Get a non-deleted cycle by ID.

        Raises:
            NotFoundError: If the cycle does not exist or was deleted
        """
        cycle = (
            self.db.query(ReadingCycle)
            .filter(ReadingCycle.id == cycle_id, ReadingCycle.deleted_at.is_(None))
            .first()
        )
        if cycle is None:
            raise NotFoundError("Cycle", cycle_id)
        return cycle

    def list_all(
        self,
        service_id: str | None = None,
        status: CycleStatus | None = None,
    ) -> list[ReadingCycle]:
        """List non-deleted cycles, most recent period first.

        Args:
            service_id: Only cycles of this service
            status: Only cycles whose (derived) status matches

        Returns:
            List of ReadingCycle objects
        """
        query = self.db.query(ReadingCycle).filter(ReadingCycle.deleted_at.is_(None))
        if service_id:
            query = query.filter(ReadingCycle.service_id == service_id.strip().upper())
        cycles = query.order_by(ReadingCycle.period_from.desc(), ReadingCycle.id.desc()).all()
        if status is not None:
            cycles = [c for c in cycles if c.status == status]
        return cycles

    def list_by_period_overlap(
        self,
        date_from: date,
        date_to: date,
        service_id: str | None = None,
    ) -> list[ReadingCycle]:
        """List non-deleted cycles whose period intersects [date_from, date_to]."""
        if date_from > date_to:
            raise ValidationError(
                f"Range start {date_from} is after range end {date_to}",
                {"from": date_from.isoformat(), "to": date_to.isoformat()},
            )
        query = self.db.query(ReadingCycle).filter(
            ReadingCycle.deleted_at.is_(None),
            ReadingCycle.period_from <= date_to,
            ReadingCycle.period_to >= date_from,
        )
        if service_id:
            query = query.filter(ReadingCycle.service_id == service_id.strip().upper())
        return query.order_by(ReadingCycle.period_from.asc(), ReadingCycle.id.asc()).all()

    def _ensure_name_available(
        self, name: str, service_id: str, exclude_id: int | None = None
    ) -> None:
        wanted = normalize_cycle_name(name)
        query = self.db.query(ReadingCycle).filter(
            ReadingCycle.service_id == service_id,
            ReadingCycle.deleted_at.is_(None),
        )
        if exclude_id is not None:
            query = query.filter(ReadingCycle.id != exclude_id)
        for other in query.all():
            if other.normalized_name == wanted:
                logger.warning(
                    "Duplicate cycle name rejected: name=%r service=%s clashes with cycle %d",
                    name,
                    service_id,
                    other.id,
                )
                raise DuplicateCycleNameError(name, service_id)

    def create(
        self,
        name: str,
        service_id: str,
        period_from: date,
        period_to: date,
        description: str | None = None,
        created_by: str | None = None,
    ) -> ReadingCycle:
        """Open a new reading cycle.

        Args:
            name: Cycle name, unique per service ignoring case and surrounding spaces
            service_id: WATER or ELECTRIC
            period_from: First day of the period (inclusive)
            period_to: Last day of the period (inclusive)
            description: Optional notes
            created_by: Staff member creating the cycle

        Returns:
            Created ReadingCycle in OPEN status

        Raises:
            ValidationError: Blank name, unknown service or period_from after period_to
            DuplicateCycleNameError: Name already used by another cycle of the service
        """
        if not name or not name.strip():
            raise ValidationError("Cycle name is required")
        service_id = normalize_service_id(service_id)
        if period_from is None or period_to is None:
            raise ValidationError("Both period_from and period_to are required")
        if period_from > period_to:
            raise ValidationError(
                f"period_from {period_from} cannot be after period_to {period_to}",
                {"period_from": period_from.isoformat(), "period_to": period_to.isoformat()},
            )
        with self._registry.hold_names(service_id):
            self._ensure_name_available(name, service_id)

            cycle = ReadingCycle(
                name=name.strip(),
                service_id=service_id,
                period_from=period_from,
                period_to=period_to,
                description=description,
                created_by=created_by,
                stored_status=CycleStatus.OPEN,
            )
            self.db.add(cycle)
            self.db.flush()

            AuditService.log(
                self.db,
                "cycle",
                cycle.id,
                "create",
                created_by,
                {
                    "name": cycle.name,
                    "service_id": service_id,
                    "period_from": period_from.isoformat(),
                    "period_to": period_to.isoformat(),
                },
            )
            self.db.commit()

        logger.info(
            "Created reading cycle: id=%d, name=%s, service=%s, period=%s to %s",
            cycle.id,
            cycle.name,
            service_id,
            period_from,
            period_to,
        )
        return cycle

    def update(
        self,
        cycle_id: int,
        name: str | None = None,
        period_from: date | None = None,
        period_to: date | None = None,
        description: str | None = None,
        actor_id: str | None = None,
    ) -> ReadingCycle:
        """Edit a cycle's name, period or description.

        The period order is deliberately not re-validated on edit; only the
        name rules apply.

        Raises:
            NotFoundError: If the cycle does not exist
            ValidationError: Blank name
            DuplicateCycleNameError: Name already used by another cycle of the service
        """
        cycle = self.get(cycle_id)
        changes: dict = {}

        if name is not None:
            if not name.strip():
                raise ValidationError("Cycle name is required")
            if name.strip() != cycle.name:
                changes["name"] = {"old": cycle.name, "new": name.strip()}

        if period_from is not None and period_from != cycle.period_from:
            changes["period_from"] = {
                "old": cycle.period_from.isoformat(),
                "new": period_from.isoformat(),
            }
            cycle.period_from = period_from

        if period_to is not None and period_to != cycle.period_to:
            changes["period_to"] = {"old": cycle.period_to.isoformat(), "new": period_to.isoformat()}
            cycle.period_to = period_to

        if description is not None and description != cycle.description:
            changes["description"] = {"old": cycle.description, "new": description}
            cycle.description = description

        with self._registry.hold_names(cycle.service_id):
            if "name" in changes:
                try:
                    self._ensure_name_available(name, cycle.service_id, exclude_id=cycle.id)
                except DuplicateCycleNameError:
                    self.db.rollback()
                    raise
                cycle.name = name.strip()
            if changes:
                AuditService.log(self.db, "cycle", cycle.id, "update", actor_id, changes)
            self.db.commit()

        if cycle.period_from > cycle.period_to:
            logger.warning(
                "Cycle %d edited to an inverted period %s to %s",
                cycle.id,
                cycle.period_from,
                cycle.period_to,
            )
        logger.info("Updated reading cycle %d: fields=%s", cycle.id, sorted(changes))
        return cycle

    def cancel(self, cycle_id: int, actor_id: str | None = None) -> ReadingCycle:
        """Cancel a cycle and every assignment still open under it.

        Raises:
            NotFoundError: If the cycle does not exist
            InvalidStateError: If the cycle is already COMPLETED or CANCELLED
        """
        with locked_cycle(self.db, cycle_id, self.locks) as cycle:
            current = cycle.status
            if current not in ACTIVE_CYCLE_STATUSES:
                logger.warning("Rejected cancel of cycle %d in status %s", cycle_id, current.value)
                raise InvalidStateError(
                    f"Cycle {cycle_id} is {current.value}; only OPEN or IN_PROGRESS cycles "
                    "can be cancelled",
                    {"cycle_id": cycle_id, "status": current.value},
                )

            now = datetime.now(timezone.utc)
            cascaded = []
            for assignment in cycle.assignments:
                if assignment.stored_status in OPEN_ASSIGNMENT_STATUSES:
                    assignment.stored_status = AssignmentStatus.CANCELLED
                    assignment.cancelled_at = now
                    cascaded.append(assignment.id)

            cycle.stored_status = CycleStatus.CANCELLED
            cycle.cancelled_at = now
            AuditService.log(
                self.db,
                "cycle",
                cycle.id,
                "cancel",
                actor_id,
                {"status": CycleStatus.CANCELLED.value, "cancelled_assignments": cascaded},
            )
            self.db.commit()

        logger.info(
            "Cancelled reading cycle %d (was %s), cascaded to %d assignments",
            cycle_id,
            current.value,
            len(cascaded),
        )
        return cycle

    def delete(self, cycle_id: int, actor_id: str | None = None) -> None:
        """Soft-delete a cycle that never had assignments.

        Raises:
            NotFoundError: If the cycle does not exist
            InvalidStateError: If the cycle has assignments or is COMPLETED
        """
        with locked_cycle(self.db, cycle_id, self.locks) as cycle:
            if cycle.assignments or cycle.stored_status == CycleStatus.COMPLETED:
                raise InvalidStateError(
                    f"Cycle {cycle_id} has assignments or is completed and cannot be deleted; "
                    "cancel it instead",
                    {"cycle_id": cycle_id, "status": cycle.status.value},
                )
            cycle.deleted_at = datetime.now(timezone.utc)
            AuditService.log(self.db, "cycle", cycle.id, "delete", actor_id)
            self.db.commit()
        logger.info("Deleted reading cycle %d", cycle_id)


__all__ = ["ReadingCycleService", "normalize_service_id"]
