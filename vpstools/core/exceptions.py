"""Custom exception hierarchy for vpstools.

All vpstools-specific exceptions inherit from VPSToolsError, enabling
callers to catch every fleet and compiler failure with a single except clause.
"""

from __future__ import annotations


class VPSToolsError(Exception):
    """Base exception for all vpstools errors."""


# =============================================================================
# Fleet
# =============================================================================


class InvalidConfigurationError(VPSToolsError):
    """Raised when a draft or patch is malformed. No I/O has happened."""


class ConnectionFailedError(VPSToolsError):
    """Raised when an admission probe cannot reach or log into the host."""


class UnknownInstanceError(VPSToolsError):
    """Raised when an operation names a VPS id that is not in the roster."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"VPS instance {instance_id} not found")


class NotConnectedError(VPSToolsError):
    """Raised when telemetry is requested without a prior successful session."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(
            f"VPS instance {instance_id} has no successful SSH probe; "
            "run test_connection() first"
        )


class CollectionError(VPSToolsError):
    """Raised when any telemetry query fails. The whole snapshot is discarded."""

    def __init__(self, query: str, reason: str) -> None:
        self.query = query
        self.reason = reason
        super().__init__(f"Telemetry query '{query}' failed: {reason}")


class DuplicateServiceError(VPSToolsError):
    """Raised when a service id is already attached to the instance."""

    def __init__(self, instance_id: str, service_id: str) -> None:
        self.instance_id = instance_id
        self.service_id = service_id
        super().__init__(f"Service {service_id} already exists on {instance_id}")


# =============================================================================
# Configuration compiler
# =============================================================================


class UnknownConfigurationError(VPSToolsError):
    """Raised when a client configuration id is absent from the catalog."""

    def __init__(self, config_id: str) -> None:
        self.config_id = config_id
        super().__init__(f"Client configuration {config_id} not found")


class MissingFieldError(VPSToolsError):
    """Raised when a protocol-required field is absent."""

    def __init__(self, field: str, protocol: str | None = None) -> None:
        self.field = field
        self.protocol = protocol
        where = f" for {protocol}" if protocol else ""
        super().__init__(f"Missing required field '{field}'{where}")


class UnsupportedCombinationError(VPSToolsError):
    """Raised when a format/app pair is outside the supported matrix."""

    def __init__(self, fmt: str, app: str | None, reason: str = "") -> None:
        self.fmt = fmt
        self.app = app
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"Unsupported combination format={fmt} app={app}{detail}")


class UnsupportedProtocolError(VPSToolsError):
    """Raised when a protocol value cannot be expressed by the target."""

    def __init__(self, protocol: str, target: str = "uri") -> None:
        self.protocol = protocol
        self.target = target
        super().__init__(f"Protocol '{protocol}' is not supported by {target}")


class ExportFailedError(VPSToolsError):
    """Raised when the export sink cannot write the rendered artifact."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Export failed: {reason}")
