# src/fleet_backup/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fleet_backup import client
from fleet_backup.collector import BackupWorker
from fleet_backup.config import build_worker_config, settings
from fleet_backup.exceptions import ConfigError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not (settings.geotab_database and settings.geotab_user):
        raise ConfigError("GEOTAB_DATABASE and GEOTAB_USER must be set")

    source = client.GeotabClient(
        settings.geotab_user,
        settings.geotab_password,
        settings.geotab_database,
        settings.geotab_server,
        results_limit=settings.feed_results_limit,
    )
    worker = BackupWorker(source, build_worker_config(settings))
    app.state.worker = worker
    logger.info("Backing up %s to %s", settings.geotab_database, worker.output_dir)

    task = asyncio.create_task(worker.run())
    yield
    worker.request_stop()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    await source.aclose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="fleet backup",
    description="Incremental per-vehicle CSV backup of MyGeotab position and odometer data.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health", tags=["system"])
def health():
    worker: BackupWorker = app.state.worker
    ctx = worker.context
    return {
        "status": "ok",
        "cycles": ctx.cycles,
        "cursor": ctx.cursor.isoformat(),
        "vehicles": len(ctx.cache),
        "stopped": worker.stopped,
        "last_cycle": ctx.last_cycle.as_dict() if ctx.last_cycle else None,
    }
