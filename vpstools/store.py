"""JSON persistence for the roster and the client configuration catalog.

Instances are stored in a flattened form (credential fields side by side
with ``auth_method``); loading re-checks that the two agree.
"""

from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Literal, Self

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, model_validator

from vpstools.api.model import (
    AuthMethod,
    KeyAuth,
    PasswordAuth,
    SystemInfo,
    VPSInstance,
    VPSService,
)
from vpstools.compiler.model import ClientConfiguration
from vpstools.constants import ServiceStatus, ServiceType
from vpstools.core.exceptions import InvalidConfigurationError

SNAPSHOT_VERSION = 1


class SystemInfoRecord(BaseModel):
    os_name: str
    os_version: str = ""
    kernel_version: str
    cpu_model: str
    cpu_cores: int
    memory_total: int
    memory_available: int
    disk_total: int
    disk_available: int
    load_average: tuple[float, float, float]
    uptime_seconds: float

    @classmethod
    def from_info(cls, info: SystemInfo) -> Self:
        return cls(
            os_name=info.os_name,
            os_version=info.os_version,
            kernel_version=info.kernel_version,
            cpu_model=info.cpu_model,
            cpu_cores=info.cpu_cores,
            memory_total=info.memory_total,
            memory_available=info.memory_available,
            disk_total=info.disk_total,
            disk_available=info.disk_available,
            load_average=info.load_average,
            uptime_seconds=info.uptime.total_seconds(),
        )

    def to_info(self) -> SystemInfo:
        data = self.model_dump(exclude={"uptime_seconds"})
        return SystemInfo(**data, uptime=timedelta(seconds=self.uptime_seconds))


class ServiceRecord(BaseModel):
    id: str
    type: ServiceType
    display_name: str = ""
    port: int | None = None
    status: ServiceStatus = ServiceStatus.UNKNOWN
    updated_at: datetime


class InstanceRecord(BaseModel):
    id: str
    name: str
    host: str
    port: int
    username: str
    auth_method: AuthMethod
    password: str | None = None
    key_path: str | None = None
    key_passphrase: str | None = None
    group: str
    tags: list[str] = Field(default_factory=list)
    is_active: bool = True
    last_connected: datetime | None = None
    system_info: SystemInfoRecord | None = None
    services: list[ServiceRecord] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_instance(cls, instance: VPSInstance) -> Self:
        match instance.credential:
            case PasswordAuth(password=password):
                auth: dict[str, str | None] = {"password": password}
            case KeyAuth(key_path=key_path, passphrase=passphrase):
                auth = {"key_path": key_path, "key_passphrase": passphrase}
        return cls(
            id=instance.id,
            name=instance.name,
            host=instance.host,
            port=instance.port,
            username=instance.username,
            auth_method=instance.auth_method,
            group=instance.group,
            tags=list(instance.tags),
            is_active=instance.is_active,
            last_connected=instance.last_connected,
            system_info=SystemInfoRecord.from_info(instance.system_info) if instance.system_info else None,
            services=[ServiceRecord(**_service_fields(s)) for s in instance.services],
            created_at=instance.created_at,
            updated_at=instance.updated_at,
            **auth,
        )

    def to_instance(self) -> VPSInstance:
        """Raises InvalidConfigurationError if credential fields disagree with auth_method."""
        match self.auth_method:
            case "password" if self.password and not self.key_path:
                credential: PasswordAuth | KeyAuth = PasswordAuth(self.password)
            case "key" if self.key_path and not self.password:
                credential = KeyAuth(self.key_path, self.key_passphrase)
            case _:
                raise InvalidConfigurationError(
                    f"instance {self.id}: credential fields do not match auth_method '{self.auth_method}'"
                )
        try:
            system_info = self.system_info.to_info() if self.system_info else None
        except ValueError as e:
            raise InvalidConfigurationError(f"instance {self.id}: {e}") from e
        return VPSInstance(
            id=self.id,
            name=self.name,
            host=self.host,
            port=self.port,
            username=self.username,
            credential=credential,
            group=self.group,
            tags=tuple(self.tags),
            is_active=self.is_active,
            last_connected=self.last_connected,
            system_info=system_info,
            services=tuple(VPSService(**s.model_dump()) for s in self.services),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


def _service_fields(service: VPSService) -> dict[str, object]:
    return {
        "id": service.id,
        "type": service.type,
        "display_name": service.display_name,
        "port": service.port,
        "status": service.status,
        "updated_at": service.updated_at,
    }


class FleetSnapshot(BaseModel):
    version: Literal[1] = SNAPSHOT_VERSION
    instances: list[InstanceRecord] = Field(default_factory=list)
    configurations: list[ClientConfiguration] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_ids(self) -> Self:
        for kind, ids in (
            ("instance", [r.id for r in self.instances]),
            ("configuration", [c.id for c in self.configurations]),
        ):
            if dupes := sorted({i for i in ids if ids.count(i) > 1}):
                raise ValueError(f"duplicate {kind} ids: {', '.join(dupes)}")
        return self

    @classmethod
    def capture(
        cls,
        instances: list[VPSInstance],
        configurations: list[ClientConfiguration],
    ) -> Self:
        return cls(
            instances=[InstanceRecord.from_instance(i) for i in instances],
            configurations=configurations,
        )

    def roster(self) -> list[VPSInstance]:
        return [record.to_instance() for record in self.instances]


class JsonStore:
    """Saves and loads a FleetSnapshot as one JSON document.

    Writes go through a temporary file and ``os.replace``.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self._log = logger.bind(component="store")

    def save(self, snapshot: FleetSnapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = snapshot.model_dump_json(indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        self._log.debug(
            "Saved {n} instances and {m} configurations to {path}",
            n=len(snapshot.instances),
            m=len(snapshot.configurations),
            path=str(self.path),
        )

    def load(self) -> FleetSnapshot | None:
        """Returns None when nothing has been saved yet.

        Raises:
            InvalidConfigurationError: The file exists but does not parse.
        """
        if not self.path.is_file():
            return None
        try:
            return FleetSnapshot.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            raise InvalidConfigurationError(f"{self.path}: {e}") from e
