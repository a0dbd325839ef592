"""Client configuration catalog and rendering service.

Example:
    compiler = ConfigurationCompiler(sink=FileSink("~/vpstools-export"))
    config = compiler.from_deployment(vps, {"protocol": "vless", "port": "443", "uuid": "..."})
    text = compiler.render(config.id, "clash", "stash")
    link = compiler.generate_protocol_url(config.id)
    location = await compiler.export_config(config.id, "sing-box")
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable, Mapping

from loguru import logger
from pydantic import ValidationError

from vpstools.api.model import VPSInstance
from vpstools.compiler.apps import resolve
from vpstools.compiler.model import (
    ClientAppType,
    ClientConfigFormat,
    ClientConfiguration,
    ProtocolType,
    TLSConfig,
    TransportConfig,
)
from vpstools.compiler.protocols import to_endpoint
from vpstools.compiler.structured import (
    clash_document,
    dump_json,
    dump_yaml,
    singbox_document,
    uri_bundle,
    v2ray_document,
)
from vpstools.compiler.uri import build_uri
from vpstools.core.exceptions import (
    ExportFailedError,
    InvalidConfigurationError,
    UnknownConfigurationError,
    UnsupportedCombinationError,
    UnsupportedProtocolError,
)
from vpstools.export.sink import MemorySink, export_filename
from vpstools.infra.protocols import ExportSink

DEFAULT_DEPLOYMENT_PROTOCOL = ProtocolType.SHADOWSOCKS
DEFAULT_DEPLOYMENT_PORT = 8080


def _coerce_format(fmt: ClientConfigFormat | str, app: ClientAppType | str | None) -> ClientConfigFormat:
    try:
        return ClientConfigFormat(fmt)
    except ValueError:
        raise UnsupportedCombinationError(str(fmt), None if app is None else str(app), "unknown format") from None


def _coerce_app(fmt: ClientConfigFormat | str, app: ClientAppType | str | None) -> ClientAppType | None:
    if app is None:
        return None
    try:
        return ClientAppType(app)
    except ValueError:
        raise UnsupportedCombinationError(str(fmt), str(app), "unknown app") from None


def _deployment_transport(transport_type: str, variables: Mapping[str, str]) -> TransportConfig:
    path = variables.get("vless_transport_path") or None
    host = variables.get("vless_transport_host") or None
    if transport_type.strip().lower() != "grpc":
        return TransportConfig(type=transport_type, path=path, host=host)
    # Deployments put the gRPC service name in either variable.
    permit = variables.get("vless_transport_permit_without_stream")
    return TransportConfig(
        type=transport_type,
        host=host,
        service_name=variables.get("vless_transport_service_name") or path,
        idle_timeout=variables.get("vless_transport_idle_timeout") or None,
        ping_timeout=variables.get("vless_transport_ping_timeout") or None,
        permit_without_stream=None if permit is None else _flag(permit),
    )


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes")


class ConfigurationCompiler:
    """Owns ClientConfiguration records and renders them.

    Rendering is pure: it reads the stored record and never changes the
    catalog. Catalog mutations are all-or-nothing under a lock.
    """

    def __init__(self, sink: ExportSink | None = None) -> None:
        self.sink = sink or MemorySink()
        self._lock = threading.Lock()
        self._catalog: dict[str, ClientConfiguration] = {}
        self._log = logger.bind(component="compiler")

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def add(self, config: ClientConfiguration) -> ClientConfiguration:
        """Insert a record. Existing records are never overwritten.

        Raises:
            InvalidConfigurationError: A record with the same id exists.
        """
        with self._lock:
            if config.id in self._catalog:
                raise InvalidConfigurationError(f"client configuration {config.id} already exists")
            self._catalog[config.id] = config
        self._log.debug("Added {protocol} config {id}", protocol=config.protocol_type, id=config.id)
        return config

    def remove(self, config_id: str) -> bool:
        with self._lock:
            return self._catalog.pop(config_id, None) is not None

    def remove_many(self, config_ids: Iterable[str]) -> int:
        with self._lock:
            return sum(1 for i in set(config_ids) if self._catalog.pop(i, None) is not None)

    def get(self, config_id: str) -> ClientConfiguration:
        with self._lock:
            config = self._catalog.get(config_id)
        if config is None:
            raise UnknownConfigurationError(config_id)
        return config

    def configurations(self) -> list[ClientConfiguration]:
        with self._lock:
            return list(self._catalog.values())

    def for_vps(self, vps_id: str) -> list[ClientConfiguration]:
        return [c for c in self.configurations() if c.vps_id == vps_id]

    def from_deployment(
        self,
        vps: VPSInstance,
        variables: Mapping[str, str],
        deployment_task_id: str | None = None,
    ) -> ClientConfiguration:
        """Build and store a record from a finished deployment's variables.

        Raises:
            UnsupportedProtocolError: Unknown ``protocol`` value.
            InvalidConfigurationError: Unparseable port or malformed fields.
        """
        raw_protocol = variables.get("protocol") or DEFAULT_DEPLOYMENT_PROTOCOL
        try:
            protocol = ProtocolType(raw_protocol)
        except ValueError:
            raise UnsupportedProtocolError(raw_protocol, "catalog") from None

        try:
            port = int(variables.get("port") or DEFAULT_DEPLOYMENT_PORT)
        except ValueError:
            raise InvalidConfigurationError(f"invalid port '{variables['port']}'") from None

        try:
            transport = None
            if transport_type := variables.get("vless_transport_type"):
                transport = _deployment_transport(transport_type, variables)

            tls = None
            if _flag(variables.get("tls_enabled")):
                alpn = [a.strip() for a in (variables.get("tls_alpn") or "").split(",") if a.strip()]
                tls = TLSConfig(
                    server_name=variables.get("tls_server_name") or None,
                    allow_insecure=_flag(variables.get("tls_allow_insecure")),
                    alpn=tuple(alpn) or None,
                    fingerprint=variables.get("tls_fingerprint") or None,
                )

            config = ClientConfiguration(
                vps_id=vps.id,
                deployment_task_id=deployment_task_id,
                protocol_type=protocol,
                server_address=vps.host,
                port=port,
                password=variables.get("password") or None,
                uuid=variables.get("uuid") or None,
                method=variables.get("method") or None,
                transport=transport,
                tls=tls,
            )
        except ValidationError as e:
            raise InvalidConfigurationError(str(e)) from e

        return self.add(config)

    def snapshot(self) -> list[ClientConfiguration]:
        return self.configurations()

    def restore(self, configurations: Iterable[ClientConfiguration]) -> None:
        """Replace the catalog wholesale.

        Raises:
            InvalidConfigurationError: Duplicate ids.
        """
        catalog: dict[str, ClientConfiguration] = {}
        for config in configurations:
            if config.id in catalog:
                raise InvalidConfigurationError(f"duplicate configuration id {config.id} in snapshot")
            catalog[config.id] = config
        with self._lock:
            self._catalog = catalog
        self._log.info("Restored {n} client configurations", n=len(catalog))

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def render(
        self,
        config_id: str,
        fmt: ClientConfigFormat | str,
        app: ClientAppType | str | None = None,
    ) -> str:
        """Render a stored record for a format and optional app.

        Raises:
            UnknownConfigurationError: No such record.
            MissingFieldError: A protocol-required field is absent.
            UnsupportedCombinationError: ``(fmt, app)`` is outside the matrix.
            UnsupportedProtocolError: ``fmt`` cannot express the protocol.
        """
        config = self.get(config_id)
        fmt_ = _coerce_format(fmt, app)
        app_ = _coerce_app(fmt, app)
        endpoint = to_endpoint(config)
        profile = resolve(fmt_, app_, config.protocol_type)

        match fmt_:
            case ClientConfigFormat.SING_BOX:
                mixed = profile.mixed_inbound if profile else False
                return dump_json(singbox_document(endpoint, mixed_inbound=mixed))
            case ClientConfigFormat.CLASH:
                return dump_yaml(clash_document(endpoint))
            case ClientConfigFormat.V2RAY:
                return dump_json(v2ray_document(endpoint))
            case ClientConfigFormat.URI_BUNDLE:
                return uri_bundle([endpoint], base64_body=profile.base64_bundle if profile else False)

    def generate_protocol_url(self, config_id: str) -> str:
        """The record's single-line share link.

        Raises:
            UnknownConfigurationError: No such record.
            MissingFieldError: A protocol-required field is absent.
        """
        return build_uri(to_endpoint(self.get(config_id)))

    async def export_config(
        self,
        config_id: str,
        fmt: ClientConfigFormat | str,
        app: ClientAppType | str | None = None,
        sink: ExportSink | None = None,
    ) -> str:
        """Render and hand the text to a sink.

        Render failures propagate unchanged; only the write is reported as
        ExportFailedError.

        Returns:
            The location reported by the sink.
        """
        text = self.render(config_id, fmt, app)
        config = self.get(config_id)
        filename = export_filename(config, ClientConfigFormat(fmt))
        try:
            location = await asyncio.to_thread((sink or self.sink).write, filename, text)
        except ExportFailedError:
            raise
        except Exception as e:
            raise ExportFailedError(f"{type(e).__name__}: {e}") from e
        self._log.info("Exported {id} as {fmt} to {location}", id=config_id, fmt=str(fmt), location=location)
        return location
