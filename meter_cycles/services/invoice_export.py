"""Invoice service client: turns a finished reading cycle into invoices."""

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from meter_cycles.config import settings
from meter_cycles.services.errors import ExportFailedError
from meter_cycles.services.upstream import UpstreamClient, UpstreamResponseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportSummary:
    """Counts reported by the invoice service for one export."""

    total_readings: int
    invoices_created: int
    invoices_skipped: int = 0
    invoice_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExportSummary":
        return cls(
            total_readings=int(data["totalReadings"]),
            invoices_created=int(data["invoicesCreated"]),
            invoices_skipped=int(data.get("invoicesSkipped") or 0),
            invoice_ids=[str(i) for i in data.get("invoiceIds") or []],
            errors=list(data.get("errors") or []),
            message=data.get("message"),
        )


class InvoiceExportClient(UpstreamClient):
    """Client for the invoice service's cycle export endpoint."""

    service_name = "invoice-service"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        super().__init__(base_url or settings.invoice_service_url, timeout, client)

    def export(self, cycle_id: int) -> ExportSummary:
        """Ask the invoice service to create invoices for a cycle.

        Raises:
            ExportFailedError: If the service rejects the export or answers malformed counts
            UpstreamUnavailableError: On timeout or transport failure
        """
        try:
            result = self._request("POST", f"/api/meter-readings/export/cycle/{cycle_id}")
        except UpstreamResponseError as e:
            detail = e.details.get("message") if isinstance(e.details, dict) else None
            raise ExportFailedError(
                cycle_id, detail or str(e), upstream_status=e.status_code
            ) from e

        if not isinstance(result, dict):
            raise ExportFailedError(cycle_id, "unexpected response format")
        try:
            return ExportSummary.from_dict(result)
        except (KeyError, TypeError, ValueError) as e:
            raise ExportFailedError(cycle_id, f"malformed export summary: {e}") from e


__all__ = ["InvoiceExportClient", "ExportSummary"]
