# src/fleet_backup/models.py
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class Vehicle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Opaque device identifier")
    name: str = Field("", description="Display name")
    serial_number: str = Field("", description="Telematics device serial number")
    vin: str | None = Field(None, description="Vehicle identification number")


class _Sample(BaseModel):
    vehicle_id: str
    timestamp: datetime
    id: str

    @field_validator("timestamp", mode="after")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Timestamps without an offset are UTC."""
        return _as_utc(v)

    @property
    def merge_key(self) -> tuple[float, str]:
        return merge_key(self)


class PositionSample(_Sample):
    """One GPS fix."""

    latitude: float = 0.0
    longitude: float = 0.0
    speed: float = 0.0


class StatusSample(_Sample):
    """One diagnostic reading, e.g. an odometer value."""

    value: float | None = None
    diagnostic_id: str | None = None


Record = PositionSample | StatusSample


def merge_key(record: Record) -> tuple[float, str]:
    """Sort key for interleaving both record kinds chronologically.

    Epoch seconds first, record id as tiebreak. Comparing a numeric epoch
    keeps the order chronological regardless of how timestamps render.
    """
    return (record.timestamp.timestamp(), record.id)


class FeedVersions(BaseModel):
    """Continuation tokens returned by the source, one per record kind."""

    position_version: str | None = None
    status_version: str | None = None


class FetchResult(BaseModel):
    positions: list[PositionSample] = []
    statuses: list[StatusSample] = []
    versions: FeedVersions = FeedVersions()

    @property
    def count(self) -> int:
        return len(self.positions) + len(self.statuses)

    def latest_timestamp(self) -> datetime | None:
        """Newest record timestamp across both kinds, None when empty."""
        timestamps = [r.timestamp for r in self.positions] + [
            r.timestamp for r in self.statuses
        ]
        return max(timestamps, default=None)
