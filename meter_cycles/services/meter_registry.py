"""Meter registry client: meters per unit and service, and the readings recorded against them."""

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from meter_cycles.config import settings
from meter_cycles.services.errors import UpstreamUnavailableError
from meter_cycles.services.upstream import UpstreamClient, UpstreamResponseError

logger = logging.getLogger(__name__)


def parse_upstream_date(value: Any) -> date | None:
    """Parse an ISO date or datetime string down to a date."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def parse_index(value: Any) -> Decimal | None:
    """Parse a meter index; anything that is not a number is a ValueError."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"invalid meter index {value!r}") from e


@dataclass(frozen=True)
class Meter:
    """Meter installed on a unit for one service."""

    id: str
    unit_id: str
    meter_code: str | None = None
    active: bool = True
    last_reading_date: date | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Meter":
        return cls(
            id=str(data["id"]),
            unit_id=str(data["unitId"]),
            meter_code=data.get("meterCode"),
            active=bool(data.get("active", True)),
            last_reading_date=parse_upstream_date(data.get("lastReadingDate")),
        )


@dataclass(frozen=True)
class MeterReading:
    """Index value captured on a meter at a given date."""

    id: str
    meter_id: str
    reading_date: date
    current_index: Decimal | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MeterReading":
        reading_date = parse_upstream_date(data["readingDate"])
        if reading_date is None:
            raise ValueError(f"reading {data.get('id')} has no readingDate")
        index = data.get("currentIndex", data.get("currIndex"))
        return cls(
            id=str(data["id"]),
            meter_id=str(data["meterId"]),
            reading_date=reading_date,
            current_index=parse_index(index),
        )


class MeterRegistryClient(UpstreamClient):
    """Read-only client for the meter registry service."""

    service_name = "meter-registry"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        super().__init__(base_url or settings.meter_registry_url, timeout, client)

    def list_meters(self, building_id: str, service_id: str) -> list[Meter]:
        """List meters of a building for one service."""
        try:
            items = self._get_items(
                "/api/meters", params={"buildingId": building_id, "serviceId": service_id}
            )
        except UpstreamResponseError as e:
            raise UpstreamUnavailableError(self.service_name, str(e)) from e
        return self._decode("meter", Meter.from_dict, items)

    def list_readings(
        self,
        building_id: str,
        service_id: str,
        date_from: date,
        date_to: date,
    ) -> list[MeterReading]:
        """List readings of a building's meters dated within [date_from, date_to]."""
        try:
            items = self._get_items(
                "/api/meter-readings",
                params={
                    "buildingId": building_id,
                    "serviceId": service_id,
                    "from": date_from.isoformat(),
                    "to": date_to.isoformat(),
                },
            )
        except UpstreamResponseError as e:
            raise UpstreamUnavailableError(self.service_name, str(e)) from e
        readings = self._decode("meter reading", MeterReading.from_dict, items)
        logger.debug(
            "Fetched %d %s readings for building %s between %s and %s",
            len(readings),
            service_id,
            building_id,
            date_from,
            date_to,
        )
        return readings


__all__ = ["MeterRegistryClient", "Meter", "MeterReading", "parse_index", "parse_upstream_date"]
