"""Unit directory client: the authoritative list of buildings and billable units."""

import logging
from dataclasses import dataclass, replace
from typing import Any

import httpx

from meter_cycles.config import settings
from meter_cycles.services.errors import NotFoundError, UpstreamUnavailableError
from meter_cycles.services.upstream import UpstreamClient, UpstreamResponseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Building:
    """Building as listed by the unit directory."""

    id: str
    code: str | None = None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Building":
        return cls(id=str(data["id"]), code=data.get("code"), name=data.get("name"))


@dataclass(frozen=True)
class Unit:
    """Apartment or other billable unit inside a building."""

    id: str
    code: str
    floor: int | None
    status: str | None
    building_id: str | None = None
    owner_id: str | None = None
    owner_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Unit":
        floor = data.get("floor")
        owner_id = data.get("ownerId") or data.get("primaryResidentId")
        return cls(
            id=str(data["id"]),
            code=data.get("code") or str(data["id"]),
            floor=int(floor) if floor is not None else None,
            status=data.get("status"),
            building_id=str(data["buildingId"]) if data.get("buildingId") is not None else None,
            owner_id=str(owner_id) if owner_id else None,
            owner_name=data.get("ownerName") or None,
        )

    @property
    def has_owner(self) -> bool:
        """Occupied units have an owner or primary resident on record."""
        return bool(self.owner_id or self.owner_name)

    def is_billable(self, inactive_statuses: list[str] | None = None) -> bool:
        """Units with one of the inactive statuses are excluded from billing."""
        inactive = {s.upper() for s in (inactive_statuses or settings.inactive_unit_statuses)}
        return (self.status or "").upper() not in inactive

    def on_floors(self, floor_from: int | None, floor_to: int | None) -> bool:
        """Check the unit lies in the inclusive floor range; no bounds means all floors."""
        if floor_from is None and floor_to is None:
            return True
        if self.floor is None:
            return False
        if floor_from is not None and self.floor < floor_from:
            return False
        if floor_to is not None and self.floor > floor_to:
            return False
        return True


class UnitDirectoryClient(UpstreamClient):
    """Read-only client for the unit directory service."""

    service_name = "unit-directory"

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        super().__init__(base_url or settings.unit_directory_url, timeout, client)

    def list_buildings(self) -> list[Building]:
        """List every building known to the directory."""
        try:
            items = self._get_items("/api/buildings")
        except UpstreamResponseError as e:
            raise UpstreamUnavailableError(self.service_name, str(e)) from e
        return self._decode("building", Building.from_dict, items)

    def list_units(self, building_id: str) -> list[Unit]:
        """List all units of a building, billable or not.

        Raises:
            NotFoundError: If the directory does not know the building
            UpstreamUnavailableError: If the directory cannot be reached or sends malformed units
        """
        try:
            items = self._get_items(f"/api/units/building/{building_id}")
        except UpstreamResponseError as e:
            if e.status_code == 404:
                raise NotFoundError("Building", building_id) from e
            raise UpstreamUnavailableError(self.service_name, str(e)) from e

        units = [
            unit if unit.building_id is not None else replace(unit, building_id=building_id)
            for unit in self._decode("unit", Unit.from_dict, items)
        ]
        logger.debug("Fetched %d units for building %s", len(units), building_id)
        return units


__all__ = ["UnitDirectoryClient", "Unit", "Building"]
