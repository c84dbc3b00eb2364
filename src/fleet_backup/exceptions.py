"""Exception hierarchy for fleet-backup."""


class FleetBackupError(Exception):
    """Base exception for all fleet-backup errors."""


class ConfigError(FleetBackupError):
    """Invalid or missing configuration. Fatal at startup."""


class FetchError(FleetBackupError):
    """The telemetry source could not deliver a cycle's data."""


class TransientNetworkError(FetchError):
    """Network-level failure (connect, timeout, non-2xx). Retried after a short pause."""


class BackendUnavailableError(FetchError):
    """The remote database is down or being maintained. Retried after a long pause."""


class ApiError(FetchError):
    """The API answered with an error we have no specific handling for."""

    def __init__(self, message: str, *, name: str = "", method: str = "") -> None:
        self.name = name
        self.method = method
        super().__init__(message)


class AuthenticationError(ApiError):
    """Credentials rejected, even after a fresh login."""


class FileContentionError(FleetBackupError):
    """A vehicle's output file could not be opened or written (lock, disk, permissions)."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class UnknownVehicleError(FleetBackupError):
    """A record references a vehicle id missing from the device cache."""


class MalformedWatermarkError(FleetBackupError):
    """The last line of an output file does not start with a timestamp."""
