"""Export trigger: hands a cycle to the invoice service once the completion gate allows it."""

import logging
from datetime import date
from typing import Callable

from sqlalchemy.orm import Session

from meter_cycles.services.audit_service import AuditService
from meter_cycles.services.completion_gate import CompletionGate
from meter_cycles.services.errors import PreconditionFailedError
from meter_cycles.services.invoice_export import ExportSummary, InvoiceExportClient
from meter_cycles.services.locks import CycleLockRegistry, locked_cycle
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.unit_directory import UnitDirectoryClient

logger = logging.getLogger(__name__)


class ExportService:
    """Service for exporting a cycle's readings into invoices."""

    def __init__(
        self,
        db: Session,
        units: UnitDirectoryClient,
        meters: MeterRegistryClient,
        exporter: InvoiceExportClient,
        locks: CycleLockRegistry | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.db = db
        self.locks = locks
        self.exporter = exporter
        self.gate = CompletionGate(db, units, meters, locks, today)

    def export_cycle(self, cycle_id: int, actor_id: str | None = None) -> ExportSummary:
        """Export a cycle to the invoice service.

        The gate is re-evaluated under the cycle lock right before the upstream
        call. Exporting the same cycle again is allowed; the repeat is recorded
        and logged as a warning.

        Raises:
            NotFoundError: Unknown cycle
            PreconditionFailedError: Cycle neither COMPLETED nor completable
            ExportFailedError: Invoice service rejected the export
            UpstreamUnavailableError: An upstream service could not be reached
        """
        with locked_cycle(self.db, cycle_id, self.locks):
            eligibility = self.gate.export_eligibility(cycle_id)
            if not eligibility.can_export:
                logger.warning(
                    "Rejected export of cycle %d (%s): %s",
                    cycle_id,
                    eligibility.status.value,
                    "; ".join(eligibility.reasons),
                )
                raise PreconditionFailedError(
                    f"Cycle {cycle_id} cannot be exported: " + "; ".join(eligibility.reasons),
                    {
                        "cycle_id": cycle_id,
                        "rule": eligibility.rule,
                        "reasons": eligibility.reasons,
                    },
                )

            previous_exports = AuditService.count(self.db, "cycle", cycle_id, "export")
            summary = self.exporter.export(cycle_id)

            AuditService.log(
                self.db,
                "cycle",
                cycle_id,
                "export",
                actor_id,
                {
                    "total_readings": summary.total_readings,
                    "invoices_created": summary.invoices_created,
                    "invoices_skipped": summary.invoices_skipped,
                    "errors": summary.errors,
                },
            )
            self.db.commit()

        if previous_exports:
            logger.warning(
                "Cycle %d exported again (%d earlier exports); invoice service reported %d created",
                cycle_id,
                previous_exports,
                summary.invoices_created,
            )
        logger.info(
            "Exported cycle %d: %d readings, %d invoices created, %d skipped",
            cycle_id,
            summary.total_readings,
            summary.invoices_created,
            summary.invoices_skipped,
        )
        return summary


__all__ = ["ExportService"]
