"""Client configuration compiler.

Renders stored ClientConfiguration records into sing-box, Clash and V2Ray
documents and into protocol share links.
"""

from vpstools.compiler.compiler import ConfigurationCompiler
from vpstools.compiler.model import (
    ClientAppType,
    ClientConfigFormat,
    ClientConfiguration,
    ProtocolType,
    TLSConfig,
    TransportConfig,
)
from vpstools.compiler.protocols import Endpoint, to_endpoint
from vpstools.compiler.uri import build_uri, parse_uri

__all__ = [
    "ClientAppType",
    "ClientConfigFormat",
    "ClientConfiguration",
    "ConfigurationCompiler",
    "Endpoint",
    "ProtocolType",
    "TLSConfig",
    "TransportConfig",
    "build_uri",
    "parse_uri",
    "to_endpoint",
]
