import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Protocol

from fleet_backup.config import WorkerConfig
from fleet_backup.device_cache import DeviceCache
from fleet_backup.exceptions import (
    BackendUnavailableError,
    FileContentionError,
    TransientNetworkError,
)
from fleet_backup.merge import MergeIndex, build_index
from fleet_backup.models import FeedVersions, FetchResult, Vehicle
from fleet_backup.watermark import resolve_watermark
from fleet_backup.writer import (
    BackupStats,
    ensure_output_dir,
    output_path,
    write_vehicle,
)

logger = logging.getLogger(__name__)


class TelemetrySource(Protocol):
    async def fetch(
        self, since: datetime, versions: FeedVersions | None = None
    ) -> FetchResult: ...

    async def list_vehicles(self) -> list[Vehicle]: ...


@dataclass
class CycleSummary:
    outcome: str = "ok"  # ok | network_error | backend_unavailable | error
    fetched_positions: int = 0
    fetched_statuses: int = 0
    written_positions: int = 0
    written_statuses: int = 0
    dropped: int = 0
    failed_vehicles: list[str] = field(default_factory=list)
    finished_at: datetime | None = None

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "fetched": {
                "positions": self.fetched_positions,
                "statuses": self.fetched_statuses,
            },
            "written": {
                "positions": self.written_positions,
                "statuses": self.written_statuses,
            },
            "dropped": self.dropped,
            "failed_vehicles": list(self.failed_vehicles),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


@dataclass
class WorkerContext:
    """Everything one worker mutates. Nothing here is shared between workers."""

    cursor: datetime
    cache: DeviceCache = field(default_factory=DeviceCache)
    versions: FeedVersions = field(default_factory=FeedVersions)
    stats: BackupStats = field(default_factory=BackupStats)
    index: MergeIndex | None = None
    stop_requested: bool = False
    cycles: int = 0
    last_cycle: CycleSummary | None = None

    def __post_init__(self):
        if self.index is None:
            self.index = MergeIndex(self.cache)


class BackupWorker:
    """Fetch, merge and append loop for one fleet."""

    def __init__(self, source: TelemetrySource, config: WorkerConfig):
        self.source = source
        self.config = config
        self.output_dir = ensure_output_dir(config.output_dir)
        start = datetime.now(timezone.utc) - timedelta(hours=config.hours_to_backup)
        self.context = WorkerContext(cursor=start)

    @property
    def stopped(self) -> bool:
        return self.context.stop_requested

    def request_stop(self) -> None:
        """Stop after the current cycle. In-flight fetches and writes finish."""
        self.context.stop_requested = True

    # ── Phases ───────────────────────────────────────────────────────

    async def fetch(self, summary: CycleSummary) -> FetchResult | None:
        """Fetch a cycle's data, or apply the backoff for the failure and return None."""
        ctx = self.context
        try:
            await ctx.cache.ensure_loaded(self.source.list_vehicles)
            result = await self.source.fetch(ctx.cursor, ctx.versions)
        except TransientNetworkError as e:
            logger.warning(
                "Network error, retrying in %ss: %s", self.config.network_retry_pause, e
            )
            summary.outcome = "network_error"
            await asyncio.sleep(self.config.network_retry_pause)
            return None
        except BackendUnavailableError as e:
            logger.warning(
                "Backend unavailable, retrying in %ss: %s",
                self.config.backend_retry_pause,
                e,
            )
            summary.outcome = "backend_unavailable"
            await asyncio.sleep(self.config.backend_retry_pause)
            return None
        except Exception:
            logger.exception("Fetch failed")
            summary.outcome = "error"
            return None

        logger.debug("Fetched %d records since %s", result.count, ctx.cursor.isoformat())
        self.advance_cursor(result)
        summary.fetched_positions = len(result.positions)
        summary.fetched_statuses = len(result.statuses)
        return result

    def advance_cursor(self, result: FetchResult) -> None:
        """Move the cursor to the newest record seen, less the safety margin.

        The cursor never moves backwards and stays put when nothing came
        back, so records the backend finalizes late are fetched again and
        filtered by the watermark instead of being skipped.
        """
        ctx = self.context
        ctx.versions = result.versions
        latest = result.latest_timestamp()
        if latest is None:
            return
        candidate = latest - timedelta(seconds=self.config.cursor_safety_margin)
        if candidate > ctx.cursor:
            ctx.cursor = candidate

    def merge(self, result: FetchResult, summary: CycleSummary) -> MergeIndex:
        index = build_index(result.positions, result.statuses, self.context.cache)
        self.context.index = index
        summary.dropped = index.dropped
        return index

    def write_one(self, vehicle_id: str) -> None:
        ctx = self.context
        path = output_path(self.output_dir, vehicle_id)
        watermark = resolve_watermark(path)
        result = write_vehicle(
            path,
            ctx.cache.require(vehicle_id),
            ctx.index.records(vehicle_id),
            watermark,
        )
        ctx.stats.add(result)

    async def write(self, summary: CycleSummary) -> None:
        """Write every vehicle independently; one failure never stops the rest."""
        ctx = self.context
        ctx.stats.reset()
        try:
            for vehicle_id in ctx.index.vehicles():
                try:
                    self.write_one(vehicle_id)
                except FileContentionError as e:
                    logger.warning(
                        "Skipping %s this cycle, retrying in %ss: %s",
                        vehicle_id,
                        self.config.io_retry_pause,
                        e,
                    )
                    summary.failed_vehicles.append(vehicle_id)
                    await asyncio.sleep(self.config.io_retry_pause)
                except Exception:
                    logger.exception("Write failed for %s", vehicle_id)
                    summary.failed_vehicles.append(vehicle_id)
        finally:
            ctx.index.clear()

        summary.written_positions = ctx.stats.positions
        summary.written_statuses = ctx.stats.statuses
        logger.info(ctx.stats.summary())

    # ── Loop ─────────────────────────────────────────────────────────

    async def run_cycle(self) -> CycleSummary:
        """One fetch, merge, write pass. Never raises on fetch or I/O failures."""
        summary = CycleSummary()
        result = await self.fetch(summary)
        if result is not None:
            self.merge(result, summary)
            await self.write(summary)
        summary.finished_at = datetime.now(timezone.utc)
        self.context.cycles += 1
        self.context.last_cycle = summary
        return summary

    async def run(self, continuous: bool | None = None) -> None:
        """Run one cycle, or keep cycling until request_stop() is called."""
        if continuous is None:
            continuous = self.config.continuous
        logger.info(
            "Starting backup to %s%s",
            self.output_dir,
            f", every {self.config.backup_interval}s" if continuous else "",
        )
        try:
            while not self.context.stop_requested:
                await self.run_cycle()
                if not continuous:
                    break
                await asyncio.sleep(self.config.backup_interval)
        except asyncio.CancelledError:
            logger.info("Backup worker shutting down")
            raise
        logger.info("Backup worker stopped after %d cycles", self.context.cycles)
