"""Typed failures raised by the reading cycle services.

Every rejected operation raises one of these with a message naming the
invariant that failed, so an operator can resolve it without digging.
"""

from typing import Any

from fastapi import status


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        message: str,
        code: str,
        http_status: int = 400,
        details: dict[str, Any] | None = None,
    ):
        """Initialize error."""
        self.message = message
        self.code = code
        self.http_status = http_status
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppError):
    """Bad input shape or values (blank name, empty unit set, inverted dates)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class DuplicateCycleNameError(ValidationError):
    """A non-deleted cycle of the same service already uses this name."""

    def __init__(self, name: str, service_id: str):
        super().__init__(
            f"Cycle name '{name.strip()}' is already taken for service {service_id}",
            {"name": name.strip(), "service_id": service_id},
        )
        self.code = "duplicate_name"
        self.http_status = status.HTTP_409_CONFLICT


class ConflictError(AppError):
    """Units already owned by another active assignment of the same cycle."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "conflict", status.HTTP_409_CONFLICT, details)


class NotFoundError(AppError):
    """Referenced cycle or assignment does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(
            f"{entity} {entity_id} not found",
            "not_found",
            status.HTTP_404_NOT_FOUND,
            {"entity": entity, "id": entity_id},
        )


class InvalidStateError(AppError):
    """Transition attempted from a terminal or disallowed state."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "invalid_state", status.HTTP_409_CONFLICT, details)


class PreconditionFailedError(AppError):
    """Completion gate rejected an assignment completion, cycle completion or export."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, "precondition_failed", status.HTTP_412_PRECONDITION_FAILED, details)


class UpstreamUnavailableError(AppError):
    """An upstream service timed out, refused the connection or answered garbage."""

    def __init__(self, service: str, message: str):
        super().__init__(
            f"{service} unavailable: {message}",
            "upstream_unavailable",
            status.HTTP_503_SERVICE_UNAVAILABLE,
            {"service": service},
        )
        self.service = service


class ExportFailedError(AppError):
    """The invoice service rejected an export after the gate passed."""

    def __init__(self, cycle_id: int, message: str, upstream_status: int | None = None):
        super().__init__(
            f"Export of cycle {cycle_id} failed: {message}",
            "export_failed",
            status.HTTP_502_BAD_GATEWAY,
            {"cycle_id": cycle_id, "upstream_status": upstream_status},
        )


__all__ = [
    "AppError",
    "ValidationError",
    "DuplicateCycleNameError",
    "ConflictError",
    "NotFoundError",
    "InvalidStateError",
    "PreconditionFailedError",
    "UpstreamUnavailableError",
    "ExportFailedError",
]
