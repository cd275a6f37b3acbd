"""Audit log model for tracking cycle and assignment lifecycle events."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from meter_cycles.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for tracking changes to cycles and assignments.

    Records who (actor_id) did what (action) to which entity (entity_type, entity_id)
    and optional field snapshots (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(50), index=True)
    """Entity type being audited: "cycle", "assignment"."""

    entity_id: Mapped[int] = mapped_column(index=True)
    """Primary key of the entity being audited."""

    action: Mapped[str] = mapped_column(String(50))
    """Action performed: "create", "cancel", "complete", "export", etc."""

    actor_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    """Staff identifier who performed the action. None for system actions."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    """Optional JSON snapshot of changed fields: {"status": "CANCELLED", "cascaded": 3}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor_id={self.actor_id})>"
        )


__all__ = ["AuditLog"]
