"""Tagged per-protocol endpoint variants.

Each variant carries exactly the fields its protocol needs, so a renderer
that receives an endpoint never has to check for missing credentials.
``to_endpoint`` is the single place where the flattened ClientConfiguration
is checked against a protocol's required fields.

Only vmess, vless and trojan carry a stream transport; shadowsocks carries
neither transport nor TLS.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Final

from vpstools.compiler.model import ClientConfiguration, ProtocolType, TLSConfig, TransportConfig
from vpstools.constants import DEFAULT_NAIVE_USER, HYSTERIA_BANDWIDTH_MBPS
from vpstools.core.exceptions import MissingFieldError

REQUIRED_FIELDS: Final[dict[ProtocolType, tuple[str, ...]]] = {
    ProtocolType.SHADOWSOCKS: ("method", "password"),
    ProtocolType.VMESS: ("uuid",),
    ProtocolType.VLESS: ("uuid",),
    ProtocolType.TROJAN: ("password",),
    ProtocolType.HYSTERIA: ("password",),
    ProtocolType.HYSTERIA2: ("password",),
    ProtocolType.TUIC: ("uuid", "password"),
    ProtocolType.NAIVE: ("password",),
    ProtocolType.SHADOWTLS: ("password",),
}


def default_name(protocol: ProtocolType | str, server: str) -> str:
    return f"{protocol}-{server}"


@dataclass(frozen=True, slots=True, kw_only=True)
class _Endpoint:
    server: str
    port: int
    name: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ShadowsocksEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.SHADOWSOCKS
    method: str
    password: str


@dataclass(frozen=True, slots=True, kw_only=True)
class VMessEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.VMESS
    uuid: str
    alter_id: int = 0
    security: str = "auto"
    transport: TransportConfig | None = None
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class VLESSEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.VLESS
    uuid: str
    flow: str = ""
    transport: TransportConfig | None = None
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class TrojanEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.TROJAN
    password: str
    transport: TransportConfig | None = None
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class HysteriaEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.HYSTERIA
    password: str
    up_mbps: int = HYSTERIA_BANDWIDTH_MBPS
    down_mbps: int = HYSTERIA_BANDWIDTH_MBPS
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class Hysteria2Endpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.HYSTERIA2
    password: str
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class TUICEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.TUIC
    uuid: str
    password: str
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class NaiveEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.NAIVE
    password: str
    username: str = DEFAULT_NAIVE_USER
    tls: TLSConfig | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class ShadowTLSEndpoint(_Endpoint):
    protocol: ClassVar = ProtocolType.SHADOWTLS
    password: str
    tls: TLSConfig | None = None


type Endpoint = (
    ShadowsocksEndpoint
    | VMessEndpoint
    | VLESSEndpoint
    | TrojanEndpoint
    | HysteriaEndpoint
    | Hysteria2Endpoint
    | TUICEndpoint
    | NaiveEndpoint
    | ShadowTLSEndpoint
)


def _normalize_tls(tls: TLSConfig | None) -> TLSConfig | None:
    if tls is None or not tls.enabled:
        return None
    return tls


def _normalize_transport(transport: TransportConfig | None) -> TransportConfig | None:
    # Plain TCP with no options is the protocol default.
    if transport is None:
        return None
    if transport.type == "tcp" and not (transport.path or transport.host or transport.service_name):
        return None
    return transport


def _require(config: ClientConfiguration, field: str) -> str:
    value = getattr(config, field)
    if value is None or value == "":
        raise MissingFieldError(field, str(config.protocol_type))
    return value


def to_endpoint(config: ClientConfiguration) -> Endpoint:
    """Project a stored record onto its protocol variant.

    Raises:
        MissingFieldError: A field the protocol requires is absent or empty.
    """
    for field in REQUIRED_FIELDS[config.protocol_type]:
        _require(config, field)

    common = {
        "server": config.server_address,
        "port": config.port,
        "name": default_name(config.protocol_type, config.server_address),
    }
    tls = _normalize_tls(config.tls)
    transport = _normalize_transport(config.transport)

    match config.protocol_type:
        case ProtocolType.SHADOWSOCKS:
            return ShadowsocksEndpoint(method=config.method, password=config.password, **common)
        case ProtocolType.VMESS:
            return VMessEndpoint(uuid=config.uuid, transport=transport, tls=tls, **common)
        case ProtocolType.VLESS:
            return VLESSEndpoint(uuid=config.uuid, transport=transport, tls=tls, **common)
        case ProtocolType.TROJAN:
            return TrojanEndpoint(password=config.password, transport=transport, tls=tls, **common)
        case ProtocolType.HYSTERIA:
            return HysteriaEndpoint(password=config.password, tls=tls, **common)
        case ProtocolType.HYSTERIA2:
            return Hysteria2Endpoint(password=config.password, tls=tls, **common)
        case ProtocolType.TUIC:
            return TUICEndpoint(uuid=config.uuid, password=config.password, tls=tls, **common)
        case ProtocolType.NAIVE:
            return NaiveEndpoint(password=config.password, tls=tls, **common)
        case ProtocolType.SHADOWTLS:
            return ShadowTLSEndpoint(password=config.password, tls=tls, **common)
