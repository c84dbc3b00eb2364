"""Append-only CSV output, one file per vehicle."""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from fleet_backup.exceptions import ConfigError, FileContentionError
from fleet_backup.models import PositionSample, Record, StatusSample, Vehicle
from fleet_backup.watermark import ends_with_newline

logger = logging.getLogger(__name__)

HEADER = (
    "sTimestamp,sEventId,sVehicleName,sVehicleSerialNumber,sVin,"
    "dLatitud,dLongitud,iSpeed,iOdometer"
)
PLACEHOLDER = "-"


@dataclass
class WriteResult:
    positions: int = 0
    statuses: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.positions + self.statuses


@dataclass
class BackupStats:
    """Running counters for the current cycle, used for the summary line."""

    positions: int = 0
    statuses: int = 0

    def reset(self) -> None:
        self.positions = 0
        self.statuses = 0

    def add(self, result: WriteResult) -> None:
        self.positions += result.positions
        self.statuses += result.statuses

    @property
    def total(self) -> int:
        return self.positions + self.statuses

    def summary(self) -> str:
        return (
            f"Backup done. {self.total} events stored "
            f"({self.positions} log events and {self.statuses} status events)"
        )


# ── Formatting ───────────────────────────────────────────────────────


def format_timestamp(ts: datetime) -> str:
    """ISO 8601 in UTC with a Z suffix, e.g. 2024-01-01T00:00:00Z."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def format_number(value: float | None) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _text(value: str | None) -> str:
    return (value or "").replace(",", " ")


def format_row(record: Record, vehicle: Vehicle) -> str:
    fields = [
        format_timestamp(record.timestamp),
        _text(record.id),
        _text(vehicle.name),
        _text(vehicle.serial_number),
        _text(vehicle.vin),
    ]
    if isinstance(record, PositionSample):
        fields += [
            format_number(record.latitude),
            format_number(record.longitude),
            format_number(record.speed),
            PLACEHOLDER,
        ]
    elif isinstance(record, StatusSample):
        fields += [PLACEHOLDER, PLACEHOLDER, PLACEHOLDER, format_number(record.value)]
    else:
        raise TypeError(f"Unsupported record type: {type(record).__name__}")
    return ",".join(fields).rstrip(",")


# ── Files ────────────────────────────────────────────────────────────


def ensure_output_dir(folder: str | os.PathLike) -> Path:
    if not folder:
        raise ConfigError("Output folder is required")
    path = Path(folder)
    path.mkdir(parents=True, exist_ok=True)
    return path


def output_path(folder: str | os.PathLike, vehicle_id: str) -> Path:
    return Path(folder) / f"{vehicle_id}.csv"


def write_vehicle(
    path: str | os.PathLike,
    vehicle: Vehicle,
    records: list[Record],
    watermark: datetime,
) -> WriteResult:
    """Append the records newer than ``watermark`` to the vehicle's file.

    ``records`` must already be in merge key order. The header is written
    only when the file is created. Any OS error surfaces as
    FileContentionError; rows flushed before the error stay in the file.
    """
    result = WriteResult()
    path = Path(path)
    try:
        is_new = not path.exists()
        # A last row without its newline must not absorb the first new row.
        unterminated = not is_new and not ends_with_newline(path)
        with path.open("a", encoding="utf-8", newline="") as f:
            if is_new:
                f.write(HEADER + "\n")
            for record in records:
                if record.timestamp <= watermark:
                    result.skipped += 1
                    continue
                if unterminated:
                    f.write("\n")
                    unterminated = False
                f.write(format_row(record, vehicle) + "\n")
                if isinstance(record, PositionSample):
                    result.positions += 1
                else:
                    result.statuses += 1
    except OSError as e:
        raise FileContentionError(
            f"Could not write {path}: {e}", path=str(path)
        ) from e

    logger.debug(
        "%s: %d rows appended, %d already stored", path.name, result.total, result.skipped
    )
    return result
