import logging
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from fleet_backup.exceptions import (
    ApiError,
    AuthenticationError,
    BackendUnavailableError,
    TransientNetworkError,
)
from fleet_backup.models import (
    FeedVersions,
    FetchResult,
    PositionSample,
    StatusSample,
    Vehicle,
)
from fleet_backup.writer import format_timestamp

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "my.geotab.com"
ODOMETER_DIAGNOSTIC_ID = "DiagnosticOdometerId"

_BACKEND_UNAVAILABLE = {"DbUnavailableException", "ServiceUnavailableException"}
_INVALID_USER = {"InvalidUserException"}


# ── MyGeotab response models ─────────────────────────────────────────


class GeotabRef(BaseModel):
    id: str

    @classmethod
    def coerce(cls, v):
        # Unassigned references come back as bare strings ("NoDeviceId").
        if isinstance(v, str):
            return {"id": v}
        return v


class GeotabDevice(BaseModel):
    id: str
    name: str = ""
    serialNumber: str = ""
    vehicleIdentificationNumber: str | None = None

    @field_validator("name", "serialNumber", mode="before")
    @classmethod
    def null_to_empty(cls, v):
        if v is None:
            return ""
        return v

    def to_vehicle(self) -> Vehicle:
        return Vehicle(
            id=self.id,
            name=self.name,
            serial_number=self.serialNumber,
            vin=self.vehicleIdentificationNumber or None,
        )


class GeotabLogRecord(BaseModel):
    id: str
    dateTime: datetime
    device: GeotabRef
    latitude: float = 0.0
    longitude: float = 0.0
    speed: float = 0.0

    @field_validator("device", mode="before")
    @classmethod
    def parse_device(cls, v):
        return GeotabRef.coerce(v)


class GeotabStatusData(BaseModel):
    id: str
    dateTime: datetime
    device: GeotabRef
    diagnostic: GeotabRef | None = None
    data: float | None = None

    @field_validator("device", "diagnostic", mode="before")
    @classmethod
    def parse_ref(cls, v):
        return GeotabRef.coerce(v)


# ── Parsers ──────────────────────────────────────────────────────────


def parse_devices(data: list) -> list[Vehicle]:
    vehicles = []
    for raw in data:
        try:
            vehicles.append(GeotabDevice.model_validate(raw).to_vehicle())
        except ValidationError:
            continue
    return vehicles


def parse_log_records(data: list) -> list[PositionSample]:
    """Convert LogRecord entities. Entries that fail validation are skipped."""
    positions = []
    for raw in data:
        try:
            item = GeotabLogRecord.model_validate(raw)
        except ValidationError:
            continue
        positions.append(
            PositionSample(
                vehicle_id=item.device.id,
                timestamp=item.dateTime,
                id=item.id,
                latitude=item.latitude,
                longitude=item.longitude,
                speed=item.speed,
            )
        )
    return positions


def parse_status_data(data: list) -> list[StatusSample]:
    statuses = []
    for raw in data:
        try:
            item = GeotabStatusData.model_validate(raw)
        except ValidationError:
            continue
        statuses.append(
            StatusSample(
                vehicle_id=item.device.id,
                timestamp=item.dateTime,
                id=item.id,
                value=item.data,
                diagnostic_id=item.diagnostic.id if item.diagnostic else None,
            )
        )
    return statuses


def _error_names(error: dict) -> set[str]:
    names = {error.get("name") or ""}
    for inner in error.get("errors") or []:
        names.add(inner.get("name") or "")
    data = error.get("data")
    if isinstance(data, dict):
        names.add(data.get("type") or "")
    names.discard("")
    return names


def raise_for_rpc_error(error: dict, method: str) -> None:
    """Translate a JSON-RPC error object into our exception hierarchy."""
    names = _error_names(error)
    message = error.get("message") or ", ".join(sorted(names)) or "Unknown error"
    if names & _BACKEND_UNAVAILABLE:
        raise BackendUnavailableError(f"{method}: {message}")
    if names & _INVALID_USER:
        raise AuthenticationError(
            f"{method}: {message}", name="InvalidUserException", method=method
        )
    raise ApiError(
        f"{method}: {message}", name=",".join(sorted(names)), method=method
    )


def _normalize_server(server: str) -> str:
    server = server.strip().rstrip("/")
    for prefix in ("https://", "http://"):
        if server.startswith(prefix):
            server = server[len(prefix) :]
    return server.split("/", 1)[0] or DEFAULT_SERVER


# ── Client ───────────────────────────────────────────────────────────


class GeotabClient:
    """Minimal MyGeotab JSON-RPC client covering what the backup needs.

    Credentials are cached after the first login and refreshed once when the
    server rejects the session.
    """

    def __init__(
        self,
        user: str,
        password: str,
        database: str,
        server: str = DEFAULT_SERVER,
        *,
        client: httpx.AsyncClient | None = None,
        results_limit: int = 50000,
        timeout: float = 30,
    ):
        self.user = user
        self.password = password
        self.database = database
        self.server = _normalize_server(server)
        self.results_limit = results_limit
        self.timeout = timeout
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None
        self._credentials: dict | None = None

    @property
    def url(self) -> str:
        return f"https://{self.server}/apiv1"

    async def __aenter__(self) -> "GeotabClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, method: str, params: dict) -> Any:
        try:
            resp = await self._client.post(
                self.url,
                json={"method": method, "params": params},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise TransientNetworkError(f"{method}: {e}") from e

        try:
            body = resp.json()
        except ValueError as e:
            raise ApiError(f"{method}: response is not JSON", method=method) from e
        if not isinstance(body, dict):
            raise ApiError(f"{method}: unexpected response", method=method)
        if "error" in body:
            raise_for_rpc_error(body["error"] or {}, method)
        return body.get("result")

    async def authenticate(self) -> dict:
        logger.info("Authenticating %s on %s/%s", self.user, self.server, self.database)
        result = await self._post(
            "Authenticate",
            {
                "database": self.database,
                "userName": self.user,
                "password": self.password,
            },
        )
        if not isinstance(result, dict) or "credentials" not in result:
            raise AuthenticationError("Authenticate returned no credentials")
        path = result.get("path")
        if path and path != "ThisServer":
            # The database lives on another server; talk to that one directly.
            self.server = _normalize_server(path)
        self._credentials = result["credentials"]
        return self._credentials

    async def call(self, method: str, **params) -> Any:
        """Call an API method, logging in first and once more if the session expired."""
        if self._credentials is None:
            await self.authenticate()
        try:
            return await self._post(method, {**params, "credentials": self._credentials})
        except AuthenticationError:
            logger.warning("Session rejected on %s, re-authenticating", method)
            await self.authenticate()
            return await self._post(method, {**params, "credentials": self._credentials})

    async def list_vehicles(self) -> list[Vehicle]:
        result = await self.call("Get", typeName="Device")
        if not isinstance(result, list):
            raise ApiError("Get Device: unexpected result", method="Get")
        return parse_devices(result)

    async def get_feed(
        self,
        type_name: str,
        from_version: str | None,
        search: dict | None = None,
    ) -> tuple[list, str | None]:
        """One GetFeed page. Returns (entities, toVersion)."""
        params: dict = {"typeName": type_name, "resultsLimit": self.results_limit}
        if from_version is not None:
            params["fromVersion"] = from_version
        if search:
            params["search"] = search
        result = await self.call("GetFeed", **params)
        if not isinstance(result, dict):
            raise ApiError(f"GetFeed {type_name}: unexpected result", method="GetFeed")
        return result.get("data") or [], result.get("toVersion")

    async def fetch(
        self, since: datetime, versions: FeedVersions | None = None
    ) -> FetchResult:
        """Fetch position and odometer records newer than ``since``.

        Both feeds must succeed; an error in either discards the pair.
        """
        versions = versions or FeedVersions()

        search = None
        if versions.position_version is None:
            search = {"fromDate": format_timestamp(since)}
        log_data, log_version = await self.get_feed(
            "LogRecord", versions.position_version, search
        )

        search = {"diagnosticSearch": {"id": ODOMETER_DIAGNOSTIC_ID}}
        if versions.status_version is None:
            search["fromDate"] = format_timestamp(since)
        status_data, status_version = await self.get_feed(
            "StatusData", versions.status_version, search
        )

        # The feed may ignore diagnosticSearch; keep odometer readings only.
        statuses = [
            s
            for s in parse_status_data(status_data)
            if s.diagnostic_id in (None, ODOMETER_DIAGNOSTIC_ID)
        ]
        return FetchResult(
            positions=parse_log_records(log_data),
            statuses=statuses,
            versions=FeedVersions(
                position_version=log_version or versions.position_version,
                status_version=status_version or versions.status_version,
            ),
        )
