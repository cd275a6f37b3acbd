"""FastAPI dependency providers for the upstream clients.

Each request gets its own client, closed when the request ends. Tests swap
these out through ``app.dependency_overrides``.
"""

from typing import Generator

from fastapi import Header

from meter_cycles.services.invoice_export import InvoiceExportClient
from meter_cycles.services.meter_registry import MeterRegistryClient
from meter_cycles.services.unit_directory import UnitDirectoryClient


def get_unit_directory() -> Generator[UnitDirectoryClient, None, None]:
    """Get unit directory client."""
    client = UnitDirectoryClient()
    try:
        yield client
    finally:
        client.close()


def get_meter_registry() -> Generator[MeterRegistryClient, None, None]:
    """Get meter registry client."""
    client = MeterRegistryClient()
    try:
        yield client
    finally:
        client.close()


def get_invoice_exporter() -> Generator[InvoiceExportClient, None, None]:
    """Get invoice service client."""
    client = InvoiceExportClient()
    try:
        yield client
    finally:
        client.close()


def get_actor_id(x_actor_id: str | None = Header(default=None)) -> str | None:
    """Staff identifier recorded in the audit log, taken from the X-Actor-Id header."""
    return x_actor_id


__all__ = [
    "get_unit_directory",
    "get_meter_registry",
    "get_invoice_exporter",
    "get_actor_id",
]
