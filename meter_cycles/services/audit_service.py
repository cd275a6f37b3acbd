"""Audit service for logging cycle and assignment lifecycle events."""

from sqlalchemy.orm import Session

from meter_cycles.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Entries are added to the caller's session and committed with the change
    they describe.
    """

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            db: Database session
            entity_type: Type of entity ("cycle", "assignment")
            entity_id: Primary key of the entity
            action: Action performed ("create", "cancel", "export", etc.)
            actor_id: Staff member who performed the action (optional)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=changes,
        )
        db.add(audit)
        return audit

    @staticmethod
    def count(db: Session, entity_type: str, entity_id: int, action: str) -> int:
        """Count earlier entries for an entity and action."""
        return (
            db.query(AuditLog)
            .filter(
                AuditLog.entity_type == entity_type,
                AuditLog.entity_id == entity_id,
                AuditLog.action == action,
            )
            .count()
        )


__all__ = ["AuditService"]
