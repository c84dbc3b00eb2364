"""Lazily populated vehicle lookup, one per worker."""

import logging
from collections.abc import Awaitable, Callable, Iterator

from fleet_backup.exceptions import UnknownVehicleError
from fleet_backup.models import Vehicle

logger = logging.getLogger(__name__)


class DeviceCache:
    """Maps vehicle id to vehicle metadata. Entries are never evicted."""

    def __init__(self):
        self._vehicles: dict[str, Vehicle] = {}

    def __len__(self) -> int:
        return len(self._vehicles)

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._vehicles

    def __iter__(self) -> Iterator[Vehicle]:
        return iter(self._vehicles.values())

    def add(self, vehicles: list[Vehicle]) -> int:
        """Add vehicles not already cached. Returns how many were new."""
        added = 0
        for vehicle in vehicles:
            if vehicle.id in self._vehicles:
                continue
            self._vehicles[vehicle.id] = vehicle
            added += 1
        return added

    async def ensure_loaded(
        self, list_vehicles: Callable[[], Awaitable[list[Vehicle]]]
    ) -> None:
        """Fetch the vehicle list once, if nothing is cached yet.

        Fetch errors propagate. An empty list leaves the cache empty so the
        next call tries again.
        """
        if self._vehicles:
            return
        vehicles = await list_vehicles()
        added = self.add(vehicles)
        logger.info("Device cache loaded with %d vehicles", added)

    def get(self, vehicle_id: str) -> Vehicle | None:
        return self._vehicles.get(vehicle_id)

    def require(self, vehicle_id: str) -> Vehicle:
        try:
            return self._vehicles[vehicle_id]
        except KeyError:
            raise UnknownVehicleError(f"Unknown vehicle: {vehicle_id}") from None
