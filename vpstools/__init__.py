"""vpstools - VPS fleet coordination and proxy client configuration.

Example:

    from vpstools import FleetCoordinator, ConfigurationCompiler, VPSDraft

    fleet = FleetCoordinator()
    vps = await fleet.add_instance(VPSDraft(host="203.0.113.5", username="root", password="..."))
    info = await fleet.get_system_info(vps.id)

    compiler = ConfigurationCompiler()
    config = compiler.from_deployment(vps, {"protocol": "trojan", "port": "443", "password": "..."})
    print(compiler.generate_protocol_url(config.id))
"""

from vpstools.api import (
    ConnectionTestResult,
    InstancePatch,
    KeyAuth,
    MetricsSample,
    PasswordAuth,
    SystemInfo,
    VPSDraft,
    VPSInstance,
    VPSService,
)
from vpstools.compiler import (
    ClientAppType,
    ClientConfigFormat,
    ClientConfiguration,
    ConfigurationCompiler,
    ProtocolType,
    TLSConfig,
    TransportConfig,
)
from vpstools.config import Settings, load_settings
from vpstools.constants import ServiceStatus, ServiceType
from vpstools.core.exceptions import (
    CollectionError,
    ConnectionFailedError,
    DuplicateServiceError,
    ExportFailedError,
    InvalidConfigurationError,
    MissingFieldError,
    NotConnectedError,
    UnknownConfigurationError,
    UnknownInstanceError,
    UnsupportedCombinationError,
    UnsupportedProtocolError,
    VPSToolsError,
)
from vpstools.export import FileSink, MemorySink
from vpstools.fleet import ConnectionProber, FleetCoordinator, ProbeSettings, TelemetryCollector
from vpstools.logging import LogConfig, setup_logging, teardown_logging
from vpstools.store import FleetSnapshot, JsonStore
from vpstools.workspace import Workspace

__version__ = "0.1.0"

__all__ = [
    # Fleet
    "ConnectionProber",
    "ConnectionTestResult",
    "FleetCoordinator",
    "InstancePatch",
    "KeyAuth",
    "MetricsSample",
    "PasswordAuth",
    "ProbeSettings",
    "ServiceStatus",
    "ServiceType",
    "SystemInfo",
    "TelemetryCollector",
    "VPSDraft",
    "VPSInstance",
    "VPSService",
    # Compiler
    "ClientAppType",
    "ClientConfigFormat",
    "ClientConfiguration",
    "ConfigurationCompiler",
    "FileSink",
    "MemorySink",
    "ProtocolType",
    "TLSConfig",
    "TransportConfig",
    # Persistence and settings
    "FleetSnapshot",
    "JsonStore",
    "LogConfig",
    "Settings",
    "Workspace",
    "load_settings",
    "setup_logging",
    "teardown_logging",
    # Errors
    "CollectionError",
    "ConnectionFailedError",
    "DuplicateServiceError",
    "ExportFailedError",
    "InvalidConfigurationError",
    "MissingFieldError",
    "NotConnectedError",
    "UnknownConfigurationError",
    "UnknownInstanceError",
    "UnsupportedCombinationError",
    "UnsupportedProtocolError",
    "VPSToolsError",
]
