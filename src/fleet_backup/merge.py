"""Per-vehicle ordered record sets, rebuilt every cycle."""

import logging
from collections import defaultdict

from fleet_backup.device_cache import DeviceCache
from fleet_backup.exceptions import UnknownVehicleError
from fleet_backup.models import PositionSample, Record, StatusSample, merge_key

logger = logging.getLogger(__name__)


class MergeIndex:
    """Records of both kinds for one cycle, keyed by merge key per vehicle.

    Records for vehicles the device cache does not know are dropped and
    counted in ``dropped``.
    """

    def __init__(self, cache: DeviceCache):
        self.cache = cache
        self.dropped = 0
        self._sets: dict[str, dict[tuple[float, str], Record]] = defaultdict(dict)

    def __len__(self) -> int:
        return sum(len(s) for s in self._sets.values())

    def add(self, record: Record) -> bool:
        try:
            self.cache.require(record.vehicle_id)
        except UnknownVehicleError:
            self.dropped += 1
            return False
        self._sets[record.vehicle_id][merge_key(record)] = record
        return True

    def extend(self, records: list[PositionSample] | list[StatusSample]) -> None:
        for record in records:
            self.add(record)

    def vehicles(self) -> list[str]:
        """Vehicle ids with at least one record this cycle."""
        return [vid for vid, s in self._sets.items() if s]

    def records(self, vehicle_id: str) -> list[Record]:
        """The vehicle's records in ascending merge key order."""
        entries = self._sets.get(vehicle_id, {})
        return [entries[k] for k in sorted(entries)]

    def clear(self) -> None:
        self._sets.clear()
        self.dropped = 0


def build_index(
    positions: list[PositionSample],
    statuses: list[StatusSample],
    cache: DeviceCache,
) -> MergeIndex:
    index = MergeIndex(cache)
    index.extend(positions)
    index.extend(statuses)
    if index.dropped:
        logger.debug("Dropped %d records for unknown vehicles", index.dropped)
    return index
