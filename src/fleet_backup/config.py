import os
from dataclasses import dataclass, replace


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class WorkerConfig:
    output_dir: str
    backup_interval: int = 20  # seconds between cycles
    hours_to_backup: int = 12  # initial cursor lookback
    network_retry_pause: float = 5
    backend_retry_pause: float = 300
    io_retry_pause: float = 60
    cursor_safety_margin: float = 60  # seconds
    continuous: bool = True


class Settings:
    def __init__(self):
        self.output_dir: str = os.environ.get("OUTPUT_DIR", os.getcwd())
        self.backup_interval: int = int(os.environ.get("BACKUP_INTERVAL", "20"))
        self.hours_to_backup: int = int(os.environ.get("HOURS_TO_BACKUP", "12"))
        self.network_retry_pause: float = float(
            os.environ.get("NETWORK_RETRY_PAUSE", "5")
        )
        self.backend_retry_pause: float = float(
            os.environ.get("BACKEND_RETRY_PAUSE", "300")
        )
        self.io_retry_pause: float = float(os.environ.get("IO_RETRY_PAUSE", "60"))
        self.cursor_safety_margin: float = float(
            os.environ.get("CURSOR_SAFETY_MARGIN", "60")
        )
        self.feed_results_limit: int = int(
            os.environ.get("FEED_RESULTS_LIMIT", "50000")
        )
        self.continuous: bool = _env_bool(os.environ.get("CONTINUOUS"), True)
        self.log_level: str = os.environ.get("LOG_LEVEL", "INFO")

        self.geotab_server: str = os.environ.get("GEOTAB_SERVER", "my.geotab.com")
        self.geotab_database: str = os.environ.get("GEOTAB_DATABASE", "")
        self.geotab_user: str = os.environ.get("GEOTAB_USER", "")
        self.geotab_password: str = os.environ.get("GEOTAB_PASSWORD", "")


def build_worker_config(settings: Settings, **overrides) -> WorkerConfig:
    """Build a WorkerConfig from settings; keyword overrides win (e.g. CLI flags)."""
    config = WorkerConfig(
        output_dir=settings.output_dir,
        backup_interval=settings.backup_interval,
        hours_to_backup=settings.hours_to_backup,
        network_retry_pause=settings.network_retry_pause,
        backend_retry_pause=settings.backend_retry_pause,
        io_retry_pause=settings.io_retry_pause,
        cursor_safety_margin=settings.cursor_safety_margin,
        continuous=settings.continuous,
    )
    return replace(config, **overrides)


settings = Settings()
