"""Pytest configuration and shared fixtures for meter cycle tests."""

import os
from datetime import date

# Set test database URL BEFORE any imports from meter_cycles
# This ensures the SessionLocal and engine use an in-memory database
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from meter_cycles.api.dependencies import (
    get_invoice_exporter,
    get_meter_registry,
    get_unit_directory,
)
from meter_cycles.main import app
from meter_cycles.models import Base
from meter_cycles.services import get_db
from meter_cycles.services.cycle_service import ReadingCycleService
from meter_cycles.services.errors import ExportFailedError, NotFoundError, UpstreamUnavailableError
from meter_cycles.services.invoice_export import ExportSummary
from meter_cycles.services.meter_registry import Meter, MeterReading
from meter_cycles.services.unit_directory import Building, Unit

TODAY = date(2025, 1, 15)


class FakeUnitDirectory:
    """In-process stand-in for the unit directory service."""

    def __init__(self):
        self.buildings: dict[str, Building] = {}
        self.units: dict[str, list[Unit]] = {}
        self.unavailable = False

    def add_building(self, building_id: str, code: str | None = None) -> Building:
        building = Building(building_id, code or building_id, f"Building {code or building_id}")
        self.buildings[building_id] = building
        self.units.setdefault(building_id, [])
        return building

    def add_unit(
        self,
        building_id: str,
        unit_id: str,
        floor: int | None,
        status: str = "ACTIVE",
        owner_name: str | None = "Resident",
    ) -> Unit:
        unit = Unit(unit_id, unit_id, floor, status, building_id, owner_name=owner_name)
        self.units.setdefault(building_id, []).append(unit)
        return unit

    def list_buildings(self) -> list[Building]:
        if self.unavailable:
            raise UpstreamUnavailableError("unit-directory", "connection refused")
        return list(self.buildings.values())

    def list_units(self, building_id: str) -> list[Unit]:
        if self.unavailable:
            raise UpstreamUnavailableError("unit-directory", "connection refused")
        if building_id not in self.buildings:
            raise NotFoundError("Building", building_id)
        return list(self.units[building_id])

    def close(self) -> None:
        pass


class FakeMeterRegistry:
    """In-process stand-in for the meter registry service."""

    def __init__(self):
        self.meters: dict[tuple[str, str], list[Meter]] = {}
        self.readings: dict[tuple[str, str], list[MeterReading]] = {}
        self.unavailable = False

    def add_meter(
        self,
        building_id: str,
        unit_id: str,
        service_id: str = "WATER",
        active: bool = True,
        last_reading_date: date | None = None,
    ) -> Meter:
        meter = Meter(f"M-{service_id}-{unit_id}", unit_id, None, active, last_reading_date)
        self.meters.setdefault((building_id, service_id), []).append(meter)
        return meter

    def record_reading(
        self, building_id: str, unit_id: str, reading_date: date, service_id: str = "WATER"
    ) -> MeterReading:
        readings = self.readings.setdefault((building_id, service_id), [])
        reading = MeterReading(
            f"R{len(readings) + 1}-{unit_id}", f"M-{service_id}-{unit_id}", reading_date
        )
        readings.append(reading)
        return reading

    def list_meters(self, building_id: str, service_id: str) -> list[Meter]:
        if self.unavailable:
            raise UpstreamUnavailableError("meter-registry", "timeout")
        return list(self.meters.get((building_id, service_id), []))

    def list_readings(
        self, building_id: str, service_id: str, date_from: date, date_to: date
    ) -> list[MeterReading]:
        if self.unavailable:
            raise UpstreamUnavailableError("meter-registry", "timeout")
        return [
            r
            for r in self.readings.get((building_id, service_id), [])
            if date_from <= r.reading_date <= date_to
        ]

    def close(self) -> None:
        pass


class FakeInvoiceExporter:
    """In-process stand-in for the invoice service export endpoint."""

    def __init__(self):
        self.calls: list[int] = []
        self.summary = ExportSummary(total_readings=4, invoices_created=4)
        self.fail_with: Exception | None = None
        self.rejection: tuple[str, int] | None = None

    def export(self, cycle_id: int) -> ExportSummary:
        self.calls.append(cycle_id)
        if self.fail_with is not None:
            raise self.fail_with
        if self.rejection is not None:
            raise ExportFailedError(cycle_id, *self.rejection)
        return self.summary

    def reject(self, message: str = "invoice period locked", upstream_status: int = 400) -> None:
        """Make the next exports fail as if the invoice service refused them."""
        self.rejection = (message, upstream_status)

    def close(self) -> None:
        pass


@pytest.fixture
def db_session():
    """Create test database session."""
    engine = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def unit_directory() -> FakeUnitDirectory:
    """Building B1 with two floors of two units plus one inactive unit."""
    directory = FakeUnitDirectory()
    directory.add_building("B1", "BLD-1")
    directory.add_unit("B1", "U-101", 1)
    directory.add_unit("B1", "U-102", 1)
    directory.add_unit("B1", "U-201", 2)
    directory.add_unit("B1", "U-202", 2)
    directory.add_unit("B1", "U-299", 2, status="INACTIVE")
    return directory


@pytest.fixture
def meter_registry(unit_directory) -> FakeMeterRegistry:
    """One WATER meter per billable unit of the directory, no readings yet."""
    registry = FakeMeterRegistry()
    for building_id, units in unit_directory.units.items():
        for unit in units:
            if unit.is_billable():
                registry.add_meter(building_id, unit.id)
    return registry


@pytest.fixture
def invoice_exporter() -> FakeInvoiceExporter:
    return FakeInvoiceExporter()


@pytest.fixture
def today():
    """Fixed clock for progress and overdue computations."""
    return lambda: TODAY


@pytest.fixture
def client(db_session, unit_directory, meter_registry, invoice_exporter):
    """Provide a FastAPI test client wired to the test session and fake upstreams."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_unit_directory] = lambda: unit_directory
    app.dependency_overrides[get_meter_registry] = lambda: meter_registry
    app.dependency_overrides[get_invoice_exporter] = lambda: invoice_exporter

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def make_cycle(db_session):
    """Factory for January 2025 cycles."""

    def _make(
        name: str = "Jan-2025-Water",
        service_id: str = "WATER",
        period_from: date = date(2025, 1, 1),
        period_to: date = date(2025, 1, 31),
    ):
        return ReadingCycleService(db_session).create(name, service_id, period_from, period_to)

    return _make
