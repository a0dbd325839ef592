"""Client configuration records and the enumerations they are keyed by.

ClientConfiguration is the flattened persistence/API view: every
protocol-specific field is optional here. The compiler turns it into a
per-protocol endpoint (see ``vpstools.compiler.protocols``) before
rendering, which is where missing required fields are detected.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from vpstools.api.model import utcnow


class ProtocolType(StrEnum):
    SHADOWSOCKS = "shadowsocks"
    VMESS = "vmess"
    VLESS = "vless"
    TROJAN = "trojan"
    HYSTERIA = "hysteria"
    HYSTERIA2 = "hysteria2"
    TUIC = "tuic"
    NAIVE = "naive"
    SHADOWTLS = "shadowtls"


class ClientConfigFormat(StrEnum):
    SING_BOX = "sing-box"
    CLASH = "clash"
    V2RAY = "v2ray"
    URI_BUNDLE = "uri-bundle"

    @property
    def extension(self) -> str:
        match self:
            case ClientConfigFormat.CLASH:
                return "yaml"
            case ClientConfigFormat.URI_BUNDLE:
                return "txt"
            case _:
                return "json"


class ClientAppType(StrEnum):
    CLASH = "clash"
    CLASH_FOR_WINDOWS = "clash_for_windows"
    CLASHX = "clashx"
    STASH = "stash"
    SING_BOX = "sing-box"
    HIDDIFY = "hiddify"
    V2RAYNG = "v2rayng"
    V2RAYU = "v2rayu"
    SHADOWROCKET = "shadowrocket"
    QUANTUMULT_X = "quantumult_x"
    SURGE = "surge"
    LOON = "loon"


class TransportConfig(BaseModel):
    """Stream transport below the proxy protocol (ws, grpc, http, ...).

    gRPC has no path; a ``path`` given for grpc is taken as the service
    name, the way share links carry it. The keepalive fields
    (``idle_timeout``, ``ping_timeout``, ``permit_without_stream``) are
    rendered for sing-box and ride along in share links as extra parameters.
    """

    type: str
    path: str | None = None
    host: str | None = None
    service_name: str | None = None
    idle_timeout: str | None = None
    ping_timeout: str | None = None
    permit_without_stream: bool | None = None

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("type")
    @classmethod
    def _check_type(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("transport type must not be empty")
        return value

    @model_validator(mode="before")
    @classmethod
    def _grpc_path_is_service_name(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("path") is None:
            return data
        if str(data.get("type", "")).strip().lower() != "grpc":
            return data
        if data.get("service_name") not in (None, data["path"]):
            raise ValueError("grpc transport takes service_name; path and service_name differ")
        return {**data, "service_name": data["path"], "path": None}


class TLSConfig(BaseModel):
    enabled: bool = True
    server_name: str | None = None
    allow_insecure: bool = False
    alpn: tuple[str, ...] | None = None
    fingerprint: str | None = None

    model_config = {"extra": "forbid", "frozen": True}


class ClientConfiguration(BaseModel):
    """One provisioned protocol endpoint as stored in the catalog.

    ``vps_id`` is a relation only; deleting the VPS leaves the record alone.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    vps_id: str
    protocol_type: ProtocolType
    server_address: str
    port: int
    password: str | None = None
    uuid: str | None = None
    method: str | None = None
    transport: TransportConfig | None = None
    tls: TLSConfig | None = None
    deployment_task_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"extra": "forbid", "frozen": True}

    @field_validator("server_address")
    @classmethod
    def _check_server(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("server_address must not be empty")
        return value

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 0 < value <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return value

    @property
    def display_name(self) -> str:
        return f"{self.protocol_type}-{self.server_address}"
