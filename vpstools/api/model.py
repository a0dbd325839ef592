from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal

from vpstools.constants import DEFAULT_GROUP, DEFAULT_SSH_PORT, ServiceStatus, ServiceType

type AuthMethod = Literal["password", "key"]


def utcnow() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Credentials
# =============================================================================


@dataclass(frozen=True, slots=True)
class PasswordAuth:
    """Password login."""

    password: str

    @property
    def method(self) -> AuthMethod:
        return "password"

    def __repr__(self) -> str:
        return "PasswordAuth(password='***')"


@dataclass(frozen=True, slots=True)
class KeyAuth:
    """Private key login. The key stays on disk; only its path is stored."""

    key_path: str
    passphrase: str | None = None

    @property
    def method(self) -> AuthMethod:
        return "key"

    def __repr__(self) -> str:
        return f"KeyAuth(key_path={self.key_path!r})"


type Credential = PasswordAuth | KeyAuth


# =============================================================================
# Telemetry
# =============================================================================


@dataclass(frozen=True, slots=True)
class SystemInfo:
    """Point-in-time identity and resource snapshot of a VPS.

    Sizes are bytes. Usage percentages are derived, always within [0, 100].
    Construction validates the shape so a half-parsed snapshot can never exist.
    """

    os_name: str
    kernel_version: str
    cpu_model: str
    cpu_cores: int
    memory_total: int
    memory_available: int
    disk_total: int
    disk_available: int
    load_average: tuple[float, float, float]
    uptime: timedelta
    os_version: str = ""

    def __post_init__(self) -> None:
        if self.cpu_cores <= 0:
            raise ValueError(f"cpu_cores must be positive, got {self.cpu_cores}")
        if len(self.load_average) != 3:
            raise ValueError(f"load_average needs 3 values, got {len(self.load_average)}")
        if self.uptime < timedelta(0):
            raise ValueError("uptime must not be negative")
        for name in ("memory_total", "memory_available", "disk_total", "disk_available"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")

    @property
    def memory_usage(self) -> float:
        return _usage(self.memory_total, self.memory_available)

    @property
    def disk_usage(self) -> float:
        return _usage(self.disk_total, self.disk_available)


def _usage(total: int, available: int) -> float:
    if total <= 0:
        return 0.0
    used = (total - available) / total * 100
    return min(max(used, 0.0), 100.0)


@dataclass(frozen=True, slots=True)
class MetricsSample:
    """One periodic resource sample. Usage values are percentages."""

    timestamp: datetime
    cpu_usage: float
    memory_usage: float
    disk_usage: float
    network_in: int
    network_out: int
    load_average: tuple[float, float, float]


@dataclass(frozen=True, slots=True)
class ConnectionTestResult:
    """Outcome of one probe. Transient: kept in memory, never persisted."""

    ping_success: bool
    ssh_success: bool
    ssh_error: str | None = None
    ping_latency: float | None = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def is_connected(self) -> bool:
        return self.ping_success and self.ssh_success


# =============================================================================
# Roster
# =============================================================================


@dataclass(frozen=True, slots=True)
class VPSService:
    """A service installed by the deployment collaborator. Read-only here."""

    id: str
    type: ServiceType
    display_name: str = ""
    port: int | None = None
    status: ServiceStatus = ServiceStatus.UNKNOWN
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def label(self) -> str:
        return self.display_name or str(self.type)


@dataclass(frozen=True, slots=True)
class VPSInstance:
    """A managed VPS.

    Values are immutable; the fleet coordinator replaces whole records so
    every mutation is all-or-nothing.
    """

    id: str
    name: str
    host: str
    username: str
    credential: Credential
    port: int = DEFAULT_SSH_PORT
    group: str = DEFAULT_GROUP
    tags: tuple[str, ...] = ()
    is_active: bool = True
    last_connected: datetime | None = None
    system_info: SystemInfo | None = None
    services: tuple[VPSService, ...] = ()
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def auth_method(self) -> AuthMethod:
        return self.credential.method

    @property
    def display_name(self) -> str:
        return self.name or self.host

    @property
    def connection_string(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"

    def service(self, service_id: str) -> VPSService | None:
        return next((s for s in self.services if s.id == service_id), None)
